import unittest
from unittest import mock

from branch_pos import create_app
from branch_pos.constants import DatabaseEngine, SslMode
from branch_pos.errors import NotFoundError, NotFoundKind, ValidationError
from branch_pos.extensions import db, branch_router
from branch_pos.models import Branch
from branch_pos.services import branch_service


class BranchServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        branch_router.clear()
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(Branch).delete()
        db.session.commit()
        branch_router.clear()

        patcher = mock.patch.object(branch_service.config_provider, "notify_config_changed")
        self.notify = patcher.start()
        self.addCleanup(patcher.stop)

    def test_create_defaults_to_sqlite(self):
        branch = branch_service.create_branch(code=" B001 ", name="Downtown")

        self.assertEqual(branch.code, "B001")
        self.assertEqual(branch.engine, DatabaseEngine.SQLITE.value)
        self.assertEqual(branch.ssl_mode, SslMode.DISABLE.value)
        self.assertEqual(branch.tax_rate_bps, 0)
        self.assertTrue(branch.is_active)

    def test_create_rejects_duplicate_code(self):
        branch_service.create_branch(code="B001", name="Downtown")

        with self.assertRaises(ValidationError) as ctx:
            branch_service.create_branch(code="B001", name="Another")
        self.assertEqual(ctx.exception.details, {"code": "B001"})

    def test_create_rejects_unknown_and_invalid_fields(self):
        with self.assertRaises(ValidationError) as ctx:
            branch_service.create_branch(code="B001", name="Downtown", colour="blue")
        self.assertEqual(ctx.exception.details, {"fields": ["colour"]})

        with self.assertRaises(ValidationError) as ctx:
            branch_service.create_branch(code="B001", name="Downtown", engine="oracle", db_port=70000)
        self.assertIn("engine", ctx.exception.details)
        self.assertIn("db_port", ctx.exception.details)

        with self.assertRaises(ValidationError) as ctx:
            branch_service.create_branch(code="B001", name="Downtown", tax_rate_bps=10001)
        self.assertIn("tax_rate_bps", ctx.exception.details)

        with self.assertRaises(ValidationError):
            branch_service.create_branch(code="", name="Downtown")

        self.assertEqual(db.session.query(Branch).count(), 0)

    def test_config_reflects_connection_fields(self):
        branch = branch_service.create_branch(
            code="B002",
            name="Uptown",
            engine="postgresql",
            db_server="10.0.0.5",
            db_port=5432,
            db_name="pos_b002",
            db_username="pos",
            db_password="secret",
            ssl_mode="require",
            tax_rate_bps=825,
        )

        config = branch_service.config_provider.get_config(branch.id)
        self.assertEqual(config.branch_id, branch.id)
        self.assertEqual(config.code, "B002")
        self.assertEqual(config.engine, DatabaseEngine.POSTGRESQL)
        self.assertEqual(config.server, "10.0.0.5")
        self.assertEqual(config.port, 5432)
        self.assertEqual(config.ssl_mode, SslMode.REQUIRE)
        self.assertEqual(config.tax_rate_bps, 825)

    def test_missing_or_inactive_branch_is_not_found(self):
        with self.assertRaises(NotFoundError) as ctx:
            branch_service.config_provider.get_config(999)
        self.assertEqual(ctx.exception.kind, NotFoundKind.BRANCH)

        branch = branch_service.create_branch(code="B003", name="Closed", is_active=False)
        with self.assertRaises(NotFoundError):
            branch_service.config_provider.get_config(branch.id)

        # Still visible to administration
        self.assertEqual(branch_service.get_branch(branch.id).code, "B003")

    def test_list_branches(self):
        branch_service.create_branch(code="B002", name="Uptown")
        branch_service.create_branch(code="B001", name="Downtown")
        branch_service.create_branch(code="B000", name="Closed", is_active=False)

        self.assertEqual([b.code for b in branch_service.list_branches()], ["B001", "B002"])
        self.assertEqual(
            [b.code for b in branch_service.list_branches(include_inactive=True)],
            ["B000", "B001", "B002"],
        )

    def test_connection_edit_fires_event_only_on_change(self):
        branch = branch_service.create_branch(code="B001", name="Downtown")

        branch_service.update_branch_connection(branch.id, db_additional_params="cache=private")
        self.notify.assert_called_once_with(branch.id)

        self.notify.reset_mock()
        branch_service.update_branch_connection(branch.id, db_additional_params="cache=private")
        self.notify.assert_not_called()

    def test_connection_edit_validates_before_writing(self):
        branch = branch_service.create_branch(code="B001", name="Downtown")

        with self.assertRaises(ValidationError):
            branch_service.update_branch_connection(branch.id, ssl_mode="sometimes")
        with self.assertRaises(ValidationError):
            branch_service.update_branch_connection(branch.id, tax_rate_bps=100)
        with self.assertRaises(ValidationError):
            branch_service.update_branch_connection(branch.id, db_additional_params="novalue")

        self.notify.assert_not_called()
        self.assertEqual(branch_service.get_branch(branch.id).ssl_mode, SslMode.DISABLE.value)

    def test_connection_edit_unknown_branch(self):
        with self.assertRaises(NotFoundError):
            branch_service.update_branch_connection(42, db_server="x")

    def test_settings_edit_keeps_handles_unless_deactivated(self):
        branch = branch_service.create_branch(code="B001", name="Downtown", tax_rate_bps=1500)

        branch_service.update_branch_settings(branch.id, tax_rate_bps=500, currency="EUR")
        self.notify.assert_not_called()
        self.assertEqual(branch_service.config_provider.get_config(branch.id).tax_rate_bps, 500)

        branch_service.update_branch_settings(branch.id, is_active=False)
        self.notify.assert_called_once_with(branch.id)

    def test_settings_edit_rejects_connection_fields(self):
        branch = branch_service.create_branch(code="B001", name="Downtown")

        with self.assertRaises(ValidationError) as ctx:
            branch_service.update_branch_settings(branch.id, engine="mysql")
        self.assertEqual(ctx.exception.details, {"fields": ["engine"]})


if __name__ == "__main__":
    unittest.main()
