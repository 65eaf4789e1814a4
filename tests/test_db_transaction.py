import sqlite3
import unittest
from unittest.mock import patch

from zen_platform.contexts.ordering.domain.collections import COLLECTIONS
from zen_platform.db import _connect_database, is_unique_violation, table_names
from tests.helpers.temp_db import TempDbSandbox


class DatabaseTransactionTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="db_transaction")
        self.db = _connect_database(self._temp_db.db_path)
        self.db.execute("CREATE TABLE sample (id TEXT PRIMARY KEY, orden INTEGER)")

    def tearDown(self) -> None:
        self.db.close()
        self._temp_db.cleanup()

    def test_error_inside_block_rolls_back(self) -> None:
        with self.assertRaises(ValueError):
            with self.db.transaction():
                self.db.execute("INSERT INTO sample (id, orden) VALUES ('a', 1)")
                raise ValueError("boom")

        self.assertIsNone(self.db.execute("SELECT id FROM sample").fetchone())
        self.assertFalse(self.db.in_transaction)

    def test_failed_rollback_keeps_original_error(self) -> None:
        real_execute = self.db.execute

        def execute(sql, params=None):
            if sql == "ROLLBACK":
                raise sqlite3.OperationalError("cannot rollback - no transaction is active")
            return real_execute(sql, params)

        with patch.object(self.db, "execute", side_effect=execute):
            with self.assertLogs("zen_platform", level="WARNING") as logs:
                with self.assertRaises(ValueError) as ctx:
                    with self.db.transaction():
                        raise ValueError("original")

        self.assertEqual(str(ctx.exception), "original")
        self.assertIn("db_rollback_failed", logs.output[0])
        self.assertFalse(self.db.in_transaction)

    def test_unique_violation_detection(self) -> None:
        self.db.execute("INSERT INTO sample (id, orden) VALUES ('a', 1)")
        with self.assertRaises(sqlite3.IntegrityError) as ctx:
            self.db.execute("INSERT INTO sample (id, orden) VALUES ('a', 2)")

        self.assertTrue(is_unique_violation(ctx.exception))
        self.assertFalse(is_unique_violation(sqlite3.OperationalError("database is locked")))

    def test_schema_tables_follow_collection_registry(self) -> None:
        self.assertEqual(table_names(), [collection.table for collection in COLLECTIONS.values()])


if __name__ == "__main__":
    unittest.main()
