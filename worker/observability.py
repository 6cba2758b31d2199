import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from collections import defaultdict
from threading import Lock

class StructuredLogger:
    """
    Structured JSON logger for the retention worker.
    Emits one JSON line per event with consistent base fields.
    """

    def __init__(self, name: str = "retention", level: Optional[str] = None):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level or os.getenv("LOG_LEVEL", "INFO").upper())

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(handler)

    def _base_fields(self) -> Dict[str, Any]:
        """Common fields for all log events"""
        return {
            "ts": datetime.now(timezone.utc).isoformat(),
            "pid": os.getpid(),
        }

    def log_event(
        self,
        event: str,
        level: str = "INFO",
        **fields
    ) -> None:
        """
        Log a structured event with additional fields.

        Args:
            event: Event name (e.g., "account_reaper.deleted", "stale_action_purger.window")
            level: Log level (DEBUG, INFO, WARN, ERROR)
            **fields: Additional event-specific fields
        """
        log_entry = self._base_fields()
        log_entry["level"] = level
        log_entry["event"] = event
        log_entry.update(fields)

        log_line = json.dumps(log_entry, default=str)

        if level == "ERROR":
            self.logger.error(log_line)
        elif level == "WARN":
            self.logger.warning(log_line)
        elif level == "DEBUG":
            self.logger.debug(log_line)
        else:
            self.logger.info(log_line)


class MetricsCollector:
    """
    Lightweight in-memory metrics collector for Prometheus-compatible exposition.
    Tracks counters and gauges; the worker has no request latencies to bucket.
    """

    def __init__(self):
        self._lock = Lock()
        self._counters: Dict[str, Dict[tuple, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: Dict[str, Dict[tuple, float]] = defaultdict(dict)

    def inc_counter(self, metric_name: str, labels: Optional[Dict[str, str]] = None, value: int = 1):
        """Increment a counter metric"""
        label_tuple = tuple(sorted((labels or {}).items()))
        with self._lock:
            self._counters[metric_name][label_tuple] += value

    def set_gauge(self, metric_name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """Set a gauge metric to an absolute value"""
        label_tuple = tuple(sorted((labels or {}).items()))
        with self._lock:
            self._gauges[metric_name][label_tuple] = value

    def get_counter(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> int:
        label_tuple = tuple(sorted((labels or {}).items()))
        with self._lock:
            return self._counters.get(metric_name, {}).get(label_tuple, 0)

    def reset(self):
        with self._lock:
            self._counters.clear()
            self._gauges.clear()

    @staticmethod
    def _format_labels(label_tuple: tuple) -> str:
        return ",".join(f'{k}="{v}"' for k, v in label_tuple)

    def get_prometheus_text(self) -> str:
        """
        Generate Prometheus-compatible text format exposition.
        Returns metrics in plain text format.
        """
        lines = []

        with self._lock:
            for metric_name, label_data in sorted(self._counters.items()):
                lines.append(f"# TYPE {metric_name} counter")
                for label_tuple, count in sorted(label_data.items()):
                    if label_tuple:
                        lines.append(f"{metric_name}{{{self._format_labels(label_tuple)}}} {count}")
                    else:
                        lines.append(f"{metric_name} {count}")

            for metric_name, label_data in sorted(self._gauges.items()):
                lines.append(f"# TYPE {metric_name} gauge")
                for label_tuple, value in sorted(label_data.items()):
                    if label_tuple:
                        lines.append(f"{metric_name}{{{self._format_labels(label_tuple)}}} {value}")
                    else:
                        lines.append(f"{metric_name} {value}")

        return "\n".join(lines) + "\n"


structured_logger = StructuredLogger()
metrics = MetricsCollector()
