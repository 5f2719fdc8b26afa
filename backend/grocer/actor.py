# Overview: The acting user passed explicitly into service operations.

from __future__ import annotations

from dataclasses import dataclass

MANAGEMENT_ROLES = ("admin", "manager")


@dataclass(frozen=True)
class Actor:
    """
    The user on whose behalf a service operation runs.

    Services take this explicitly instead of reading request globals, so the
    same operation can be driven from a route, a CLI command or a test.
    """
    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_management(self) -> bool:
        return self.role in MANAGEMENT_ROLES

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=user.id, role=user.role)
