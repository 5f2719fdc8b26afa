"""Accounts, authentication and sessions."""

from datetime import timedelta

import pytest

from grocer.actor import Actor
from grocer.errors import ConflictError, InvalidInputError, NotFoundError, PermissionDeniedError
from grocer.extensions import db
from grocer.models import LoginHistory, SessionToken
from grocer.services import auth_service, session_service, users_service
from grocer.services.auth_service import PasswordValidationError, validate_password_strength
from grocer.time_utils import utcnow

from conftest import PASSWORD, make_user


class TestPasswords:
    @pytest.mark.parametrize("password", ["Sh0rt!", "alllower1!", "ALLUPPER1!", "NoDigits!!", "NoSpecial12", None])
    def test_weak_passwords_rejected(self, password):
        with pytest.raises(PasswordValidationError):
            validate_password_strength(password)

    def test_weak_password_is_invalid_input(self):
        assert issubclass(PasswordValidationError, InvalidInputError)
        assert PasswordValidationError.kind == "weak_password"

    def test_hash_and_verify(self, app):
        with app.app_context():
            hashed = auth_service.hash_password(PASSWORD)
        assert hashed != PASSWORD
        assert auth_service.verify_password(PASSWORD, hashed)
        assert not auth_service.verify_password("Wrong123!", hashed)
        assert not auth_service.verify_password(PASSWORD, "not-a-bcrypt-hash")


class TestAuthenticate:
    def test_by_username_and_email(self, admin_user):
        assert auth_service.authenticate("admin", PASSWORD).id == admin_user.id
        assert auth_service.authenticate("ADMIN@grocer.test", PASSWORD).id == admin_user.id
        assert admin_user.last_login_at is not None

    def test_every_attempt_is_recorded(self, admin_user):
        auth_service.authenticate("admin", "Wrong123!", ip_address="10.0.0.1")
        auth_service.authenticate("ghost", PASSWORD)
        auth_service.authenticate("admin", PASSWORD)

        rows = db.session.query(LoginHistory).order_by(LoginHistory.id).all()
        assert [(r.identifier, r.success, r.reason) for r in rows] == [
            ("admin", False, "Invalid credentials"),
            ("ghost", False, "Unknown account"),
            ("admin", True, None),
        ]
        assert rows[0].ip_address == "10.0.0.1"
        assert rows[1].user_id is None

    def test_deactivated_user_cannot_log_in(self, db_session):
        make_user(db_session, "former", "cashier", status="deactivated")
        assert auth_service.authenticate("former", PASSWORD) is None


class TestSessions:
    def test_create_and_validate(self, admin_user):
        session, token = session_service.create_session(admin_user.id, user_agent="pytest")
        assert session.token_hash == session_service.hash_token(token)
        assert session.token_hash != token

        context = session_service.validate_session(token)
        assert context.user.id == admin_user.id
        assert context.actor == Actor(id=admin_user.id, role="admin")

    def test_unknown_token(self, db_session):
        assert session_service.validate_session("f" * 64) is None

    def test_revoked_token(self, admin_user):
        _, token = session_service.create_session(admin_user.id)
        assert session_service.revoke_session(token) is True
        assert session_service.validate_session(token) is None
        assert session_service.revoke_session(token) is False

    def test_expired_token(self, admin_user):
        session, token = session_service.create_session(admin_user.id)
        session.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()
        assert session_service.validate_session(token) is None

    def test_idle_token_is_revoked(self, admin_user):
        session, token = session_service.create_session(admin_user.id)
        session.last_used_at = utcnow() - timedelta(hours=3)
        db.session.commit()

        assert session_service.validate_session(token) is None
        db.session.refresh(session)
        assert session.is_revoked is True
        assert session.revoked_reason == "Idle timeout"

    def test_deactivated_user_cannot_get_session(self, db_session):
        user = make_user(db_session, "former", "cashier", status="deactivated")
        with pytest.raises(ValueError):
            session_service.create_session(user.id)

    def test_cleanup_removes_old_dead_sessions(self, admin_user):
        old, _ = session_service.create_session(admin_user.id)
        live, live_token = session_service.create_session(admin_user.id)
        old.created_at = utcnow() - timedelta(days=40)
        old.expires_at = utcnow() - timedelta(days=39)
        db.session.commit()

        assert session_service.cleanup_expired_sessions(retention_days=30) == 1
        assert db.session.query(SessionToken).count() == 1
        assert session_service.validate_session(live_token) is not None


class TestUserLifecycle:
    def test_admin_registers_user(self, admin_actor):
        user = users_service.register_user(
            payload={
                "username": "till1",
                "email": "Till1@Grocer.test",
                "full_name": "Till One",
                "password": PASSWORD,
                "role": "cashier",
            },
            actor=admin_actor,
        )
        assert user.email == "till1@grocer.test"
        assert user.role == "cashier"
        assert user.status == "active"

    def test_only_admin_registers(self, db_session):
        manager = Actor.from_user(make_user(db_session, "manager", "manager"))
        with pytest.raises(PermissionDeniedError):
            users_service.register_user(
                payload={"username": "x", "email": "x@x.test", "full_name": "X", "password": PASSWORD},
                actor=manager,
            )

    @pytest.mark.parametrize("payload", [
        {"username": "x", "email": "x@x.test", "full_name": "X"},
        {"username": "x", "email": "x@x.test", "full_name": "X", "password": "weak"},
        {"username": "x", "email": "x@x.test", "full_name": "X", "password": PASSWORD, "role": "owner"},
        {"username": "x", "email": "x@x.test", "full_name": "X", "password": PASSWORD, "status": "active"},
    ])
    def test_register_rejects_bad_input(self, admin_actor, payload):
        with pytest.raises(InvalidInputError):
            users_service.register_user(payload=payload, actor=admin_actor)

    def test_duplicate_username_or_email(self, admin_actor):
        with pytest.raises(ConflictError):
            users_service.create_user(username="admin", email="new@grocer.test", password=PASSWORD, full_name="A")
        with pytest.raises(ConflictError):
            users_service.create_user(username="fresh", email="admin@grocer.test", password=PASSWORD, full_name="A")

    def test_self_edit_limited_to_profile(self, db_session, admin_user):
        cashier = make_user(db_session, "cashier", "cashier")
        actor = Actor.from_user(cashier)

        updated = users_service.update_user(user_id=cashier.id, payload={"full_name": "Till Person"}, actor=actor)
        assert updated.full_name == "Till Person"

        with pytest.raises(PermissionDeniedError):
            users_service.update_user(user_id=cashier.id, payload={"role": "admin"}, actor=actor)
        with pytest.raises(PermissionDeniedError):
            users_service.update_user(user_id=admin_user.id, payload={"full_name": "Hacked"}, actor=actor)

    def test_password_change_revokes_sessions(self, admin_user, admin_actor):
        _, token = session_service.create_session(admin_user.id)
        users_service.update_user(user_id=admin_user.id, payload={"password": "N3w-Password!"}, actor=admin_actor)
        assert session_service.validate_session(token) is None
        assert auth_service.authenticate("admin", "N3w-Password!") is not None

    def test_last_admin_protected(self, admin_user, admin_actor):
        with pytest.raises(ConflictError):
            users_service.update_user(user_id=admin_user.id, payload={"role": "manager"}, actor=admin_actor)
        with pytest.raises(ConflictError):
            users_service.deactivate_user(user_id=admin_user.id, actor=admin_actor)

    def test_deactivate_and_reactivate(self, db_session, admin_actor):
        cashier = make_user(db_session, "cashier", "cashier")
        _, token = session_service.create_session(cashier.id)

        deactivated = users_service.deactivate_user(user_id=cashier.id, actor=admin_actor)
        assert deactivated.status == "deactivated"
        assert deactivated.deactivated_at is not None
        assert session_service.validate_session(token) is None
        with pytest.raises(ConflictError):
            users_service.deactivate_user(user_id=cashier.id, actor=admin_actor)

        reactivated = users_service.reactivate_user(user_id=cashier.id, actor=admin_actor)
        assert reactivated.status == "active"
        assert reactivated.deactivated_at is None

    def test_unknown_user(self, admin_actor):
        with pytest.raises(NotFoundError):
            users_service.get_user(999)

    def test_list_filters(self, db_session, admin_user):
        make_user(db_session, "cashier", "cashier")
        make_user(db_session, "former", "cashier", status="deactivated")
        assert [u.username for u in users_service.list_users(role="cashier")] == ["cashier", "former"]
        assert [u.username for u in users_service.list_users(status="deactivated")] == ["former"]
        with pytest.raises(InvalidInputError):
            users_service.list_users(status="archived")

    def test_login_history_scoping(self, db_session, admin_user, admin_actor):
        cashier = make_user(db_session, "cashier", "cashier")
        auth_service.authenticate("cashier", PASSWORD)

        assert len(users_service.login_history(user_id=cashier.id, actor=admin_actor)) == 1
        with pytest.raises(PermissionDeniedError):
            users_service.login_history(user_id=admin_user.id, actor=Actor.from_user(cashier))
