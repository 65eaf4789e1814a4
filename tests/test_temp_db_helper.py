import os
import tempfile
import unittest

from tests.helpers.temp_db import (
    TempDbSandbox,
    assert_safe_temp_db_path,
    open_sqlite_temp_connection,
    ranks_in_order,
    seed_rows,
)


class TempDbHelperTest(unittest.TestCase):
    def test_temp_db_create_and_cleanup(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_sanity")
        db_path = sandbox.db_path
        temp_dir = sandbox.temp_dir

        self.assertTrue(os.path.exists(temp_dir))
        self.assertTrue(db_path.startswith(tempfile.gettempdir()))

        conn = open_sqlite_temp_connection(db_path)
        try:
            conn.execute("CREATE TABLE IF NOT EXISTS sanity (id TEXT PRIMARY KEY, orden INTEGER)")
        finally:
            conn.close()
        seed_rows(db_path, "sanity", [{"id": "a", "orden": 2}, {"id": "b", "orden": None}])
        self.assertEqual(ranks_in_order(db_path, "sanity", ["a", "b", "missing"]), [2, None, None])

        sandbox.cleanup()
        self.assertFalse(os.path.exists(db_path))
        self.assertFalse(os.path.exists(temp_dir))

    def test_disallow_workspace_paths(self) -> None:
        workspace_db = os.path.join(os.path.dirname(os.path.dirname(__file__)), "zen_platform_test.db")
        with self.assertRaises(ValueError):
            assert_safe_temp_db_path(workspace_db)


if __name__ == "__main__":
    unittest.main()
