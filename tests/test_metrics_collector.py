"""Tests for mailcfg.metrics.collector."""

from __future__ import annotations

import threading

import pytest

from mailcfg.core.address import parse_address
from mailcfg.core.errors import RequestError
from mailcfg.metrics.collector import TRANSACTION_SECONDS, TRANSACTIONS_TOTAL, MetricsCollector


class TestCounters:
    def test_labels_are_separate(self):
        m = MetricsCollector()
        m.increment(TRANSACTIONS_TOTAL, labels={"action": "a", "outcome": "committed"})
        m.increment(TRANSACTIONS_TOTAL, 2, labels={"outcome": "committed", "action": "a"})
        m.increment(TRANSACTIONS_TOTAL, labels={"action": "b", "outcome": "committed"})
        assert m.get(TRANSACTIONS_TOTAL, labels={"action": "a", "outcome": "committed"}) == 3
        assert m.get(TRANSACTIONS_TOTAL) == 0

    def test_thread_safe(self):
        m = MetricsCollector()

        def work():
            for _ in range(1000):
                m.increment("hits")

        threads = [threading.Thread(target=work) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert m.get("hits") == 4000


class TestExport:
    def test_format(self):
        m = MetricsCollector()
        m.record_transaction("domain_add", "committed", 0.5)
        m.record_transaction("domain_add", "rejected", 0.25)
        text = m.export()
        assert "# TYPE mailcfg_uptime_seconds gauge" in text
        assert f"# TYPE {TRANSACTIONS_TOTAL} counter" in text
        assert f'{TRANSACTIONS_TOTAL}{{action="domain_add",outcome="committed"}} 1' in text
        assert f"# TYPE {TRANSACTION_SECONDS} summary" in text
        assert f'{TRANSACTION_SECONDS}_sum{{action="domain_add"}} 0.750000' in text
        assert f'{TRANSACTION_SECONDS}_count{{action="domain_add"}} 2' in text
        assert text.endswith("\n")


class TestTransactionMetrics:
    def test_outcomes_counted(self, admin, metrics):
        admin.accounts.add("bob", parse_address("bob@example.org"))
        with pytest.raises(RequestError):
            admin.accounts.add("bob", parse_address("bob2@example.org"))
        labels = {"action": "account_add"}
        assert metrics.get(TRANSACTIONS_TOTAL, labels={**labels, "outcome": "committed"}) == 1
        assert metrics.get(TRANSACTIONS_TOTAL, labels={**labels, "outcome": "rejected"}) == 1
        assert f'{TRANSACTION_SECONDS}_count{{action="account_add"}} 2' in metrics.export()
