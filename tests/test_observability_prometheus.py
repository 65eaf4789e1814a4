import json
import logging
import unittest

from zen_platform import create_app
from zen_platform.config import Config
from zen_platform.db import close_db
from zen_platform.observability import (
    JsonLogFormatter,
    metrics_snapshot,
    observe_ordering_conflict,
    reset_metrics_for_tests,
    set_log_request_id,
)
from tests.helpers.temp_db import TempDbSandbox


class ObservabilityPrometheusTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="observability_metrics")
        self.app = create_app(self._temp_db.make_config(Config, TESTING=True))
        self.client = self.app.test_client()
        with self.client.session_transaction() as session:
            session["tenant_id"] = "tenant-metrics"
            session["user_role"] = "agent"
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_metrics_for_tests()

    def test_metrics_endpoint_exposes_prometheus_metrics(self) -> None:
        self.client.post("/api/ordering/plans/items", json={"name": "Basico"})
        self.client.post("/api/ordering/plans/normalize")
        observe_ordering_conflict("plans")

        response = self.client.get("/metrics")
        self.assertEqual(response.status_code, 200)
        self.assertIn("text/plain", response.headers.get("Content-Type") or "")

        payload = response.get_data(as_text=True)
        self.assertIn("http_request_total", payload)
        self.assertIn("http_request_duration_ms_bucket", payload)
        self.assertIn('ordering_operations_total{collection="plans",operation="normalize",result="success"}', payload)
        self.assertIn('ordering_operations_total{collection="plans",operation="append",result="success"}', payload)
        self.assertIn('ordering_conflicts_total{collection="plans"} 1', payload)
        self.assertIn("ordering_duration_ms_bucket", payload)

    def test_rejected_operations_are_counted(self) -> None:
        self.client.post("/api/ordering/plans/items", json={"name": "Basico"})
        item_id = self.client.get("/api/ordering/plans").get_json()["items"][0]["id"]
        self.client.post(f"/api/ordering/plans/items/{item_id}/move", json={"rank": 5})

        payload = self.client.get("/metrics").get_data(as_text=True)
        self.assertIn('ordering_operations_total{collection="plans",operation="move",result="rejected"} 1', payload)

    def test_log_formatter_includes_request_id_outside_request_context(self) -> None:
        set_log_request_id("worker-req-123")
        formatter = JsonLogFormatter()
        record = logging.LogRecord(
            name="zen_platform",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="ordering_normalized",
            args=(),
            exc_info=None,
        )
        record.collection = "plans"
        record.normalized_count = 3
        parsed = json.loads(formatter.format(record))
        self.assertEqual(parsed.get("request_id"), "worker-req-123")
        self.assertEqual(parsed.get("collection"), "plans")
        self.assertEqual(parsed.get("normalized_count"), 3)

    def test_health_reports_db_and_metrics(self) -> None:
        self.client.get("/api/ordering/plans")

        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        payload = response.get_json() or {}
        self.assertEqual(payload.get("status"), "ok")
        self.assertEqual(payload.get("db"), "sqlite")
        self.assertGreaterEqual(int(payload["metrics"]["requests_total"]), 1)
        self.assertIn("ordering", payload["metrics"])
        self.assertEqual(metrics_snapshot()["ordering"]["conflicts_total"], 0)


if __name__ == "__main__":
    unittest.main()
