import sqlite3
import unittest
from unittest.mock import patch

from zen_platform import create_app
from zen_platform.config import Config
from zen_platform.contexts.ordering.application.service import OrderingService
from zen_platform.contexts.ordering.infrastructure.ordered_item_repository import OrderedItemRepository
from zen_platform.db import close_db
from zen_platform.ui_strings import error_message
from tests.helpers.temp_db import TempDbSandbox, ranks_in_order, seed_rows


class ErrorHandlingApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_api")
        self.app = create_app(self._temp_db.make_config(Config, TESTING=True, PROPAGATE_EXCEPTIONS=False))
        self.client = self.app.test_client()
        self.tenant_id = "tenant-error-api"
        with self.client.session_transaction() as session:
            session["tenant_id"] = self.tenant_id
            session["user_role"] = "manager"
        seed_rows(
            self._temp_db.db_path,
            "platform_plans",
            [
                {"id": "A", "tenant_id": self.tenant_id, "name": "Basico", "orden": 4, "created_at": "2024-01-01"},
                {"id": "B", "tenant_id": self.tenant_id, "name": "Pro", "orden": 8, "created_at": "2024-01-02"},
            ],
        )

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_persistence_failure_returns_503_without_internals(self) -> None:
        with patch.object(
            OrderedItemRepository,
            "update_rank",
            side_effect=sqlite3.OperationalError("disk I/O error at /var/secret.db"),
        ):
            response = self.client.post("/api/ordering/plans/normalize")

        self.assertEqual(response.status_code, 503)
        payload = response.get_json()
        self.assertEqual(payload["error"], "persistence_error")
        self.assertEqual(payload["message"], error_message("persistence_error"))
        self.assertEqual(payload["failed_item_id"], "A")
        self.assertTrue((payload.get("request_id") or "").strip())
        self.assertNotIn("secret", response.get_data(as_text=True))
        self.assertEqual(ranks_in_order(self._temp_db.db_path, "platform_plans", ["A", "B"]), [4, 8])

    def test_lost_race_returns_409_after_retry(self) -> None:
        with patch.object(OrderedItemRepository, "update_rank", return_value=0) as update_rank:
            response = self.client.post(
                "/api/ordering/plans/items/B/move",
                json={"rank": 1},
            )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()["error"], "rank_conflict")
        self.assertEqual(update_rank.call_count, 2)

    def test_unexpected_error_is_generic(self) -> None:
        with patch.object(OrderingService, "list_items", side_effect=RuntimeError("boom secret")):
            response = self.client.get("/api/ordering/plans")

        self.assertEqual(response.status_code, 500)
        payload = response.get_json()
        self.assertEqual(payload["error"], "unexpected_error")
        self.assertEqual(payload["message"], error_message("unexpected_error"))
        self.assertNotIn("boom", response.get_data(as_text=True))
        self.assertNotIn("Traceback", response.get_data(as_text=True))

    def test_request_id_is_echoed(self) -> None:
        response = self.client.post(
            "/api/ordering/plans/items/missing/move",
            json={"rank": 1},
            headers={"X-Request-Id": "req-123"},
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.headers.get("X-Request-Id"), "req-123")
        self.assertEqual(response.get_json()["request_id"], "req-123")


if __name__ == "__main__":
    unittest.main()
