import os
import tempfile
import unittest

from portal_cotacoes.config import Config
from tests.helpers.temp_db import TempDbSandbox, assert_safe_temp_db_path


class TempDbHelperTest(unittest.TestCase):
    def test_sandbox_lives_under_temp_and_is_removed(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_sanity")
        self.assertTrue(os.path.isdir(sandbox.temp_dir))
        self.assertTrue(os.path.realpath(sandbox.db_path).startswith(os.path.realpath(tempfile.gettempdir())))

        conn = sandbox.connect()
        try:
            conn.execute("CREATE TABLE sanity (id INTEGER PRIMARY KEY, value TEXT)")
            conn.execute("INSERT INTO sanity (value) VALUES ('ok')")
            self.assertEqual(conn.execute("SELECT COUNT(*) AS total FROM sanity").fetchone()["total"], 1)
        finally:
            conn.close()

        sandbox.cleanup()
        self.assertFalse(os.path.exists(sandbox.temp_dir))

    def test_make_config_disables_background_work(self) -> None:
        sandbox = TempDbSandbox()
        self.addCleanup(sandbox.cleanup)

        config = sandbox.make_config(Config, VISIT_OVERDUE_GRACE_HOURS=0)

        self.assertTrue(issubclass(config, Config))
        self.assertEqual(config.DB_PATH, sandbox.db_path)
        self.assertFalse(config.LIFECYCLE_SWEEP_ENABLED)
        self.assertFalse(config.DB_SEED_DEMO)
        self.assertEqual(config.VISIT_OVERDUE_GRACE_HOURS, 0)

    def test_disallow_workspace_paths(self) -> None:
        workspace_db = os.path.join(os.path.dirname(os.path.dirname(__file__)), "portal_cotacoes_test.db")
        with self.assertRaises(ValueError):
            assert_safe_temp_db_path(workspace_db)


if __name__ == "__main__":
    unittest.main()
