import json
import logging

from observability import StructuredLogger, MetricsCollector


def test_log_event_emits_json_line(caplog):
    logger = StructuredLogger("retention.test")
    with caplog.at_level(logging.INFO, logger="retention.test"):
        logger.log_event("account_reaper.deleted", uid="u1", actions_deleted=5)

    entry = json.loads(caplog.records[-1].getMessage())
    assert entry["event"] == "account_reaper.deleted"
    assert entry["level"] == "INFO"
    assert entry["uid"] == "u1"
    assert entry["actions_deleted"] == 5
    assert "ts" in entry


def test_error_events_use_error_level(caplog):
    logger = StructuredLogger("retention.test.errors")
    with caplog.at_level(logging.INFO, logger="retention.test.errors"):
        logger.log_event("background_task.failed", level="ERROR", task="stale_action_purger")

    assert caplog.records[-1].levelno == logging.ERROR


def test_counters_and_gauges_render_as_prometheus_text():
    collector = MetricsCollector()
    collector.inc_counter("accounts_deleted_total")
    collector.inc_counter("accounts_deleted_total")
    collector.inc_counter("rows_deleted_total", {"table": "block_batches"}, 3)
    collector.set_gauge("background_task_running", 1, {"task": "account_reaper"})

    text = collector.get_prometheus_text()

    assert "accounts_deleted_total 2" in text
    assert 'rows_deleted_total{table="block_batches"} 3' in text
    assert "# TYPE background_task_running gauge" in text
    assert 'background_task_running{task="account_reaper"} 1' in text
    assert collector.get_counter("rows_deleted_total", {"table": "block_batches"}) == 3
