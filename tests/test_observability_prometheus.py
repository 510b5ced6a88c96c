import json
import logging
import unittest

from portal_cotacoes import create_app
from portal_cotacoes.config import Config
from portal_cotacoes.core.event_bus import ProposalSent, get_event_bus
from portal_cotacoes.observability import (
    JsonLogFormatter,
    bind_request_id,
    observe_lifecycle_sweep,
    observe_proposal_rejected,
    reset_metrics_for_tests,
    set_log_request_id,
)
from tests.helpers.temp_db import TempDbSandbox


class _MetricsConfig(Config):
    TESTING = False
    DB_AUTO_INIT = False
    LIFECYCLE_SWEEP_ENABLED = False


def _record(msg: str = "worker_log", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="portal_cotacoes",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class ObservabilityPrometheusTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="observability_metrics")
        self.addCleanup(self._temp_db.cleanup)
        self.app = create_app(self._temp_db.make_config(_MetricsConfig, TESTING=False))
        self.client = self.app.test_client()
        reset_metrics_for_tests()
        self.addCleanup(reset_metrics_for_tests)

    def test_metrics_endpoint_exposes_prometheus_metrics(self) -> None:
        self.client.get("/api/unknown")
        get_event_bus().publish(
            ProposalSent(tenant_id="tenant-metrics", quote_id=9, supplier_id=1, response_id=4, total_amount=10.0)
        )
        observe_proposal_rejected("quote_locked")
        observe_lifecycle_sweep("succeeded", 12.0, {"quotes_expired": 2})

        response = self.client.get("/metrics")
        self.assertEqual(response.status_code, 200)
        self.assertIn("text/plain", response.headers.get("Content-Type") or "")

        payload = response.get_data(as_text=True)
        self.assertIn("http_request_total", payload)
        self.assertIn("http_request_duration_ms_bucket", payload)
        self.assertIn("proposal_sent_total 0", payload)
        self.assertIn('proposal_rejected_total{reason="quote_locked"} 1', payload)
        self.assertIn("draft_saved_total 0", payload)
        self.assertIn("quote_status_advance_failed_total 0", payload)
        self.assertIn('domain_event_emitted_total{event_type="ProposalSent"} 1', payload)
        self.assertIn('lifecycle_sweep_total{result="succeeded"} 1', payload)
        self.assertIn('lifecycle_sweep_transitions_total{kind="quotes_expired"} 2', payload)
        self.assertIn("lifecycle_sweep_duration_ms_bucket", payload)

    def test_health_works_before_schema_exists(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        payload = response.get_json() or {}
        self.assertEqual(payload.get("status"), "ok")
        self.assertEqual(payload.get("scheduler"), "disabled")
        self.assertIn("requests_total", payload["metrics"]["http"])


class JsonLogFormatterTest(unittest.TestCase):
    def tearDown(self) -> None:
        set_log_request_id(None)

    def test_log_formatter_includes_request_id_outside_request_context(self) -> None:
        set_log_request_id("worker-req-123")

        parsed = json.loads(JsonLogFormatter().format(_record()))

        self.assertEqual(parsed.get("request_id"), "worker-req-123")
        self.assertEqual(parsed.get("level"), "info")
        self.assertEqual(parsed.get("message"), "worker_log")

    def test_bound_request_id_is_restored(self) -> None:
        set_log_request_id("outer")
        with bind_request_id("sweep-1"):
            inner = json.loads(JsonLogFormatter().format(_record()))
        outer = json.loads(JsonLogFormatter().format(_record()))

        self.assertEqual(inner["request_id"], "sweep-1")
        self.assertEqual(outer["request_id"], "outer")

    def test_extra_fields_are_serialized(self) -> None:
        parsed = json.loads(
            JsonLogFormatter().format(_record("lifecycle_sweep_applied", tenant_id="tenant-a", quotes_expired=2))
        )

        self.assertEqual(parsed["tenant_id"], "tenant-a")
        self.assertEqual(parsed["quotes_expired"], 2)


if __name__ == "__main__":
    unittest.main()
