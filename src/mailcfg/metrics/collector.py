"""In-process metrics collector.

Counts configuration transactions by action and outcome and keeps the
total time spent in them.  Exports in OpenMetrics/Prometheus text
format::

    mailcfg_transactions_total{action="domain_add",outcome="committed"} 3
    mailcfg_transaction_seconds_sum{action="domain_add"} 0.412
    mailcfg_transaction_seconds_count{action="domain_add"} 4
"""

from __future__ import annotations

import threading
import time

TRANSACTIONS_TOTAL = "mailcfg_transactions_total"
TRANSACTION_SECONDS = "mailcfg_transaction_seconds"


class MetricsCollector:
    """Thread-safe in-process metrics collector."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}
        self._summaries: dict[str, tuple[float, int]] = {}
        self._start_time = time.time()

    def increment(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        """Increment a counter."""
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def get(self, name: str, labels: dict | None = None) -> int:
        """Get the current value of a counter."""
        key = self._make_key(name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    def observe(self, name: str, value: float, labels: dict | None = None) -> None:
        """Add one observation to a summary (sum and count only)."""
        key = self._make_key(name, labels)
        with self._lock:
            total, count = self._summaries.get(key, (0.0, 0))
            self._summaries[key] = (total + value, count + 1)

    def record_transaction(self, action: str, outcome: str, seconds: float) -> None:
        """Count one finished transaction of *action*."""
        self.increment(TRANSACTIONS_TOTAL, labels={"action": action, "outcome": outcome})
        self.observe(TRANSACTION_SECONDS, seconds, labels={"action": action})

    def export(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines = []
        lines.append("# HELP mailcfg_uptime_seconds Time since process start")
        lines.append("# TYPE mailcfg_uptime_seconds gauge")
        lines.append(f"mailcfg_uptime_seconds {time.time() - self._start_time:.1f}")
        lines.append("")

        with self._lock:
            grouped: dict[str, list[tuple[str, int]]] = {}
            for key, value in sorted(self._counters.items()):
                grouped.setdefault(self._base_name(key), []).append((key, value))

            for name, entries in sorted(grouped.items()):
                lines.append(f"# TYPE {name} counter")
                lines.extend(f"{key} {value}" for key, value in entries)
                lines.append("")

            summaries: dict[str, list[tuple[str, tuple[float, int]]]] = {}
            for key, value in sorted(self._summaries.items()):
                summaries.setdefault(self._base_name(key), []).append((key, value))

            for name, entries in sorted(summaries.items()):
                lines.append(f"# TYPE {name} summary")
                for key, (total, count) in entries:
                    suffix = key[len(name) :]
                    lines.append(f"{name}_sum{suffix} {total:.6f}")
                    lines.append(f"{name}_count{suffix} {count}")
                lines.append("")

        return "\n".join(lines) + "\n"

    @staticmethod
    def _base_name(key: str) -> str:
        return key.split("{")[0] if "{" in key else key

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"
