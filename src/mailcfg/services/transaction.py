"""Transaction protocol for configuration mutations.

A mutation runs inside :meth:`TransactionRunner.transaction`::

    with runner.transaction("dkim_add", domain=str(domain)) as txn:
        path = txn.write_key_file(rel_path, pem)      # undone on failure
        candidate = txn.base.with_domain(name, new_domain)
        txn.commit(candidate)                          # validate + publish

The block holds the store lock.  ``txn.base`` is the snapshot published
when the lock was taken; the candidate is derived from it by
copy-on-write.  Leaving the block without a successful commit removes
every key file written through the transaction, so a failed call leaves
neither a changed configuration nor new files behind.  Key files of
selectors passed to :meth:`Transaction.retire_unused` are moved to
``old/`` after the commit if nothing references them any more.
"""

from __future__ import annotations

import contextlib
import logging
import time
from typing import TYPE_CHECKING, Any

from mailcfg.core.errors import INVALID_CONFIG, NOT_FOUND, ConfigProblem, RequestError
from mailcfg.core.types import TransactionOutcome
from mailcfg.keys.material import KeyFileRollback
from mailcfg.logging.setup import operation_context
from mailcfg.validation.consistency import check_snapshot

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator
    from pathlib import Path

    from mailcfg.keys.material import KeyMaterialManager
    from mailcfg.metrics.collector import MetricsCollector
    from mailcfg.models.account import AccountConfig
    from mailcfg.models.domain import DomainConfig, Selector
    from mailcfg.models.snapshot import ConfigSnapshot
    from mailcfg.store.config_store import ConfigStore

log = logging.getLogger(__name__)


class Transaction:
    """State of one running mutation; only valid inside the ``with`` block."""

    def __init__(
        self,
        store: ConfigStore,
        keys: KeyMaterialManager,
        base: ConfigSnapshot,
    ) -> None:
        self.base = base
        self.committed: ConfigSnapshot | None = None
        self.retired: list[str] = []
        self._store = store
        self._keys = keys
        self._rollback = KeyFileRollback()
        self._retire: list[Selector] = []

    def write_key_file(self, path: str, data: bytes) -> Path:
        """Create a key file that is removed again unless the commit succeeds."""
        full = self._keys.write_key_file(path, data)
        self._rollback.add(full)
        return full

    def retire_unused(self, selectors: Iterable[Selector]) -> None:
        """Retire key files of *selectors* after commit if no longer in use."""
        self._retire.extend(selectors)

    def commit(self, candidate: ConfigSnapshot) -> ConfigSnapshot:
        """Validate *candidate* and publish it.

        Raises
        ------
        RequestError
            ``invalidConfig`` listing every invariant the candidate
            violates.

        """
        if self.committed is not None:
            msg = "transaction already committed"
            raise RuntimeError(msg)
        errors = check_snapshot(candidate)
        if errors:
            raise RequestError(INVALID_CONFIG, "; ".join(errors))
        self.committed = self._store.publish(candidate)
        return self.committed

    def _finish(self) -> None:
        success = self.committed is not None
        self._rollback.release(success=success)
        if success and self._retire:
            self.retired = self._keys.retire_key_files(
                self._retire,
                self.committed.used_key_paths,
            )


class TransactionRunner:
    """Runs configuration mutations one at a time against a store.

    Parameters
    ----------
    store:
        The configuration store whose lock serialises mutations.
    keys:
        Key material manager for files written during a transaction.
    metrics:
        Optional collector counting transactions by outcome.

    """

    def __init__(
        self,
        store: ConfigStore,
        keys: KeyMaterialManager,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.store = store
        self.keys = keys
        self._metrics = metrics

    @contextlib.contextmanager
    def transaction(self, action: str, **params: Any) -> Iterator[Transaction]:  # noqa: ANN401
        """Run the block as the single active mutation.

        *params* identify the request in failure logs.
        """
        started = time.monotonic()
        outcome = TransactionOutcome.REJECTED
        txn: Transaction | None = None
        with operation_context(action):
            try:
                with self.store.begin_transaction() as base:
                    txn = Transaction(self.store, self.keys, base)
                    try:
                        yield txn
                    finally:
                        txn._finish()  # noqa: SLF001
            except RequestError as exc:
                log.info("%s rejected: %s", action, exc.detail, extra={"params": params})
                raise
            except ConfigProblem as exc:
                outcome = TransactionOutcome.FAILED
                log.error(  # noqa: TRY400
                    "%s failed: %s",
                    action,
                    exc.detail,
                    extra={"params": params},
                )
                raise
            except Exception:
                outcome = TransactionOutcome.FAILED
                log.exception("%s failed", action, extra={"params": params})
                raise
            finally:
                if txn is not None and txn.committed is not None:
                    outcome = TransactionOutcome.COMMITTED
                if self._metrics is not None:
                    self._metrics.record_transaction(
                        action,
                        outcome.value,
                        time.monotonic() - started,
                    )

    # -- generic edits -------------------------------------------------------

    def edit_domain(
        self,
        name: str,
        modify: Callable[[DomainConfig], DomainConfig],
        action: str = "domain_save",
    ) -> ConfigSnapshot:
        """Replace domain *name* with ``modify(current)``.

        *modify* receives the frozen record and returns the new one, or
        raises :class:`RequestError` to abort.
        """
        with self.transaction(action, domain=name) as txn:
            current = txn.base.domains.get(name)
            if current is None:
                raise RequestError(NOT_FOUND, "domain does not exist")
            return txn.commit(txn.base.with_domain(name, modify(current)))

    def edit_account(
        self,
        name: str,
        modify: Callable[[AccountConfig], AccountConfig],
        action: str = "account_save",
    ) -> ConfigSnapshot:
        """Replace account *name* with ``modify(current)``."""
        with self.transaction(action, account=name) as txn:
            current = txn.base.accounts.get(name)
            if current is None:
                raise RequestError(NOT_FOUND, "account does not exist")
            return txn.commit(txn.base.with_account(name, modify(current)))

    def edit_config(
        self,
        modify: Callable[[ConfigSnapshot], ConfigSnapshot],
        action: str = "config_save",
    ) -> ConfigSnapshot:
        """Replace the whole snapshot with ``modify(current)``."""
        with self.transaction(action) as txn:
            return txn.commit(modify(txn.base))
