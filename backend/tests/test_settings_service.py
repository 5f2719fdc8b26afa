import unittest

from grocer import create_app
from grocer.actor import Actor
from grocer.errors import InvalidInputError, PermissionDeniedError
from grocer.extensions import db
from grocer.models import StoreSettings, User
from grocer.services import settings_service


class SettingsServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "SECRET_KEY": "test",
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "TESTING": True,
            "BCRYPT_ROUNDS": 4,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(StoreSettings).delete()
        db.session.query(User).delete()
        db.session.commit()

        self.admin = Actor(id=1, role="admin")
        self.manager = Actor(id=2, role="manager")

    def test_get_settings_creates_defaults_once(self):
        first = settings_service.get_settings()
        second = settings_service.get_settings()

        self.assertEqual(first.id, second.id)
        self.assertEqual(db.session.query(StoreSettings).count(), 1)
        self.assertEqual(first.invoice_prefix, "INV-")
        self.assertEqual(first.invoice_next_number, 1001)
        self.assertEqual(first.tax_rate_bps, 0)
        self.assertEqual(first.currency_code, "USD")

    def test_admin_can_update(self):
        updated = settings_service.update_settings(
            payload={"store_name": "Corner Grocer", "tax_rate_bps": 500, "currency_code": "eur"},
            actor=self.admin,
        )
        self.assertEqual(updated.store_name, "Corner Grocer")
        self.assertEqual(updated.tax_rate_bps, 500)
        self.assertEqual(updated.currency_code, "EUR")

    def test_non_admin_cannot_update(self):
        with self.assertRaises(PermissionDeniedError):
            settings_service.update_settings(payload={"store_name": "Nope"}, actor=self.manager)
        self.assertEqual(settings_service.get_settings().store_name, "My Grocery Store")

    def test_rejects_out_of_range_values(self):
        for payload in (
            {"tax_rate_bps": -1},
            {"tax_rate_bps": 10_001},
            {"invoice_next_number": 0},
            {"currency_code": "EURO"},
            {"currency_code": "U5D"},
            {"invoice_show_logo": "yes"},
            {"unknown_flag": True},
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(InvalidInputError):
                    settings_service.update_settings(payload=payload, actor=self.admin)

    def test_receipt_numbers_use_prefix_suffix_and_advance(self):
        settings_service.update_settings(
            payload={"invoice_prefix": "R-", "invoice_suffix": "/24", "invoice_next_number": 7},
            actor=self.admin,
        )
        settings = settings_service.lock_settings()
        self.assertEqual(settings_service.allocate_receipt_number(settings), "R-7/24")
        self.assertEqual(settings_service.allocate_receipt_number(settings), "R-8/24")
        db.session.commit()
        self.assertEqual(settings_service.get_settings().invoice_next_number, 9)

    def test_tax_rounds_half_up(self):
        settings = settings_service.update_settings(payload={"tax_rate_bps": 825}, actor=self.admin)
        self.assertEqual(settings_service.tax_for_subtotal(settings, 1000), 83)
        self.assertEqual(settings_service.tax_for_subtotal(settings, 999), 82)
        self.assertEqual(settings_service.tax_for_subtotal(settings, 0), 0)

    def test_lock_settings_requires_row(self):
        with self.assertRaises(RuntimeError):
            settings_service.lock_settings()
        db.session.rollback()


if __name__ == "__main__":
    unittest.main()
