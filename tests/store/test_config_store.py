"""Tests for mailcfg.store.config_store.ConfigStore."""

from __future__ import annotations

import threading

import pytest

from mailcfg.core.errors import STEP_IO, STEP_PERSISTENCE, ConfigDocumentError, InternalError
from mailcfg.models.account import AccountConfig, Destination
from mailcfg.models.domain import DomainConfig
from mailcfg.models.snapshot import ConfigSnapshot
from mailcfg.store.config_store import ConfigStore


@pytest.fixture()
def empty_store(tmp_path):
    return ConfigStore.create(tmp_path / "domains.yaml", ConfigSnapshot())


def _with_domain(snapshot: ConfigSnapshot) -> ConfigSnapshot:
    account = AccountConfig(
        domain="example.org",
        destinations={"alice@example.org": Destination()},
    )
    return snapshot.with_domain("example.org", DomainConfig()).with_account("alice", account)


class TestLoad:
    def test_create_then_load(self, tmp_path, empty_store):
        with empty_store.begin_transaction() as base:
            empty_store.publish(_with_domain(base))
        loaded = ConfigStore.load(tmp_path / "domains.yaml")
        assert loaded.snapshot() == empty_store.snapshot()
        assert loaded.config_dir == tmp_path

    def test_missing_file(self, tmp_path):
        with pytest.raises(InternalError) as exc_info:
            ConfigStore.load(tmp_path / "nope.yaml")
        assert exc_info.value.step == STEP_IO

    def test_invalid_document(self, tmp_path):
        path = tmp_path / "domains.yaml"
        path.write_text("accounts:\n  bob:\n    domain: example.org\n")
        with pytest.raises(ConfigDocumentError) as exc_info:
            ConfigStore.load(path)
        assert "account 'bob': unknown domain 'example.org'" in exc_info.value.errors


class TestPublish:
    def test_publish_writes_and_swaps(self, tmp_path, empty_store):
        with empty_store.begin_transaction() as base:
            published = empty_store.publish(_with_domain(base))
        assert empty_store.snapshot() is published
        assert "alice@example.org" in (tmp_path / "domains.yaml").read_text()

    def test_publish_requires_lock(self, empty_store):
        with pytest.raises(RuntimeError, match="without holding the transaction lock"):
            empty_store.publish(ConfigSnapshot())

    def test_publish_from_other_thread_refused(self, empty_store):
        errors = []

        def other():
            try:
                empty_store.publish(ConfigSnapshot())
            except RuntimeError as exc:
                errors.append(exc)

        with empty_store.begin_transaction():
            t = threading.Thread(target=other)
            t.start()
            t.join()
        assert len(errors) == 1

    def test_invalid_candidate_leaves_state(self, tmp_path, empty_store):
        before = (tmp_path / "domains.yaml").read_text()
        bad = ConfigSnapshot(accounts={"bob": AccountConfig(domain="example.org")})
        with empty_store.begin_transaction(), pytest.raises(ConfigDocumentError):
            empty_store.publish(bad)
        assert empty_store.snapshot() == ConfigSnapshot()
        assert (tmp_path / "domains.yaml").read_text() == before

    def test_write_failure_leaves_state(self, tmp_path, empty_store, monkeypatch):
        def fail(*_args):
            raise OSError("no space left on device")

        monkeypatch.setattr("mailcfg.store.config_store.write_atomic", fail)
        with empty_store.begin_transaction() as base, pytest.raises(InternalError) as exc_info:
            empty_store.publish(_with_domain(base))
        assert exc_info.value.step == STEP_IO
        assert empty_store.snapshot() == ConfigSnapshot()

    def test_round_trip_mismatch_detected(self, empty_store, monkeypatch):
        monkeypatch.setattr(
            "mailcfg.store.config_store.load",
            lambda _text, **_kw: (ConfigSnapshot(domains={"other.org": DomainConfig()}), []),
        )
        with empty_store.begin_transaction() as base, pytest.raises(InternalError) as exc_info:
            empty_store.publish(_with_domain(base))
        assert exc_info.value.step == STEP_PERSISTENCE

    def test_snapshot_does_not_block_during_transaction(self, empty_store):
        seen = []
        with empty_store.begin_transaction():
            t = threading.Thread(target=lambda: seen.append(empty_store.snapshot()))
            t.start()
            t.join(timeout=5)
        assert seen == [ConfigSnapshot()]
