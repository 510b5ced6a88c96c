import os
import unittest

from portal_cotacoes import create_app
from portal_cotacoes.config import Config
from portal_cotacoes.db import close_db
from portal_cotacoes.db_migrations import to_sqlalchemy_url
from tests.helpers.temp_db import TempDbSandbox, open_sqlite_temp_connection


def _table_exists(db_path: str, table_name: str) -> bool:
    if not os.path.exists(db_path):
        return False
    conn = open_sqlite_temp_connection(db_path)
    try:
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (table_name,),
        ).fetchone()
        return row is not None
    finally:
        conn.close()


class DbMigrationsTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="pc_migrations_test")
        self.db_path = self._temp_db.db_path
        self._prev_env = os.environ.get("FLASK_ENV")
        os.environ["FLASK_ENV"] = "development"

    def tearDown(self) -> None:
        if self._prev_env is None:
            os.environ.pop("FLASK_ENV", None)
        else:
            os.environ["FLASK_ENV"] = self._prev_env
        self._temp_db.cleanup()

    def _build_app(self, *, testing: bool, db_auto_init: bool):
        return create_app(self._temp_db.make_config(Config, TESTING=testing, DB_AUTO_INIT=db_auto_init))

    def test_schema_not_created_by_default(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        with app.app_context():
            close_db()

        self.assertFalse(_table_exists(self.db_path, "tenants"))

    def test_schema_created_with_explicit_dev_flag(self) -> None:
        app = self._build_app(testing=False, db_auto_init=True)
        with app.app_context():
            close_db()

        for table in ("tenants", "quotes", "quote_responses", "quote_visits", "status_events"):
            self.assertTrue(_table_exists(self.db_path, table), table)

    def test_auto_init_ignored_outside_development(self) -> None:
        os.environ["FLASK_ENV"] = "staging"

        self._build_app(testing=False, db_auto_init=True)

        self.assertFalse(_table_exists(self.db_path, "tenants"))

    def test_flask_db_upgrade_and_downgrade(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        runner = app.test_cli_runner()

        upgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(upgrade_result.exit_code, 0, msg=upgrade_result.output)
        self.assertTrue(_table_exists(self.db_path, "quote_responses"))
        self.assertTrue(_table_exists(self.db_path, "alembic_version"))

        downgrade_result = runner.invoke(args=["db", "downgrade", "base"])
        self.assertEqual(downgrade_result.exit_code, 0, msg=downgrade_result.output)
        self.assertFalse(_table_exists(self.db_path, "tenants"))
        self.assertFalse(_table_exists(self.db_path, "quote_responses"))

        reupgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(reupgrade_result.exit_code, 0, msg=reupgrade_result.output)
        self.assertTrue(_table_exists(self.db_path, "tenants"))

    def test_init_schema_then_stamp(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        runner = app.test_cli_runner()

        init_result = runner.invoke(args=["db", "init-schema"])
        stamp_result = runner.invoke(args=["db", "stamp"])

        self.assertEqual(init_result.exit_code, 0, msg=init_result.output)
        self.assertEqual(stamp_result.exit_code, 0, msg=stamp_result.output)
        self.assertTrue(_table_exists(self.db_path, "quotes"))
        self.assertTrue(_table_exists(self.db_path, "alembic_version"))


class SqlAlchemyUrlTest(unittest.TestCase):
    def test_postgres_scheme_is_normalized(self) -> None:
        self.assertEqual(to_sqlalchemy_url("postgres://u:p@db/portal"), "postgresql://u:p@db/portal")
        self.assertEqual(to_sqlalchemy_url("postgresql://u:p@db/portal"), "postgresql://u:p@db/portal")

    def test_plain_path_becomes_sqlite_url(self) -> None:
        self.assertTrue(to_sqlalchemy_url("/tmp/x/portal.db").startswith("sqlite:///"))

    def test_empty_path_is_refused(self) -> None:
        with self.assertRaises(RuntimeError):
            to_sqlalchemy_url("  ")


if __name__ == "__main__":
    unittest.main()
