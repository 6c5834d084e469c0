"""Published configuration snapshot and the mutation lock.

Usage::

    store = ConfigStore.load(config_dir / "domains.yaml", config_dir=config_dir)

    current = store.snapshot()             # never blocks

    with store.begin_transaction():
        candidate = store.snapshot().with_domain(...)
        store.publish(candidate)
"""

from __future__ import annotations

import contextlib
import logging
import threading
from typing import TYPE_CHECKING

from mailcfg.core.errors import STEP_IO, STEP_PERSISTENCE, ConfigDocumentError, InternalError
from mailcfg.store.document import load, persist, write_atomic

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from mailcfg.models.snapshot import ConfigSnapshot

log = logging.getLogger(__name__)


class ConfigStore:
    """Owns the published snapshot and the file it is persisted to.

    Exactly one mutation holds the lock at a time.  Readers call
    :meth:`snapshot` without locking and always get a complete,
    published snapshot.

    Parameters
    ----------
    path:
        The dynamic configuration document.
    config_dir:
        Directory key file paths are relative to.
    snapshot:
        The snapshot currently represented by *path*.

    """

    def __init__(self, path: Path, config_dir: Path, snapshot: ConfigSnapshot) -> None:
        self.path = path
        self.config_dir = config_dir
        self._snapshot = snapshot
        self._lock = threading.Lock()
        self._owner: int | None = None

    # -- construction --------------------------------------------------------

    @classmethod
    def load(cls, path: Path, *, config_dir: Path | None = None) -> ConfigStore:
        """Open an existing document.

        Raises
        ------
        ConfigDocumentError
            If the document does not parse or violates an invariant.
        InternalError
            If the document cannot be read.

        """
        config_dir = config_dir if config_dir is not None else path.parent
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise InternalError(STEP_IO, f"reading {path}: {exc}") from exc
        snapshot, errors = load(text, config_dir=config_dir)
        if errors:
            raise ConfigDocumentError(errors)
        log.info(
            "Loaded %s: %d domains, %d accounts",
            path,
            len(snapshot.domains),
            len(snapshot.accounts),
        )
        return cls(path, config_dir, snapshot)

    @classmethod
    def create(
        cls,
        path: Path,
        snapshot: ConfigSnapshot,
        *,
        config_dir: Path | None = None,
    ) -> ConfigStore:
        """Write an initial document for *snapshot* and open it."""
        config_dir = config_dir if config_dir is not None else path.parent
        store = cls(path, config_dir, snapshot)
        with store.begin_transaction():
            store.publish(snapshot)
        return store

    # -- access --------------------------------------------------------------

    def snapshot(self) -> ConfigSnapshot:
        """Return the currently published snapshot."""
        return self._snapshot

    @contextlib.contextmanager
    def begin_transaction(self) -> Iterator[ConfigSnapshot]:
        """Hold the mutation lock for the duration of the block.

        Yields the snapshot published at the time the lock was acquired.
        """
        with self._lock:
            self._owner = threading.get_ident()
            try:
                yield self._snapshot
            finally:
                self._owner = None

    def publish(self, snapshot: ConfigSnapshot) -> ConfigSnapshot:
        """Persist *snapshot* and make it the published one.

        The snapshot is encoded and parsed back before anything is
        written; the re-parsed result is what gets published.  On any
        failure the file and the published snapshot are unchanged.

        Raises
        ------
        RuntimeError
            If the calling thread does not hold the transaction lock.
        ConfigDocumentError
            If the encoded document does not parse back cleanly.
        InternalError
            If the document cannot be written.

        """
        if self._owner != threading.get_ident():
            msg = "publish() called without holding the transaction lock"
            raise RuntimeError(msg)

        text = persist(snapshot)
        reparsed, errors = load(text, config_dir=self.config_dir)
        if errors:
            log.error("Refusing to persist invalid configuration: %s", errors)
            raise ConfigDocumentError(errors)
        if reparsed != snapshot:
            msg = "configuration changed when parsing it back"
            raise InternalError(STEP_PERSISTENCE, msg)

        try:
            write_atomic(self.path, text)
        except OSError as exc:
            raise InternalError(STEP_IO, f"writing {self.path}: {exc}") from exc

        self._snapshot = reparsed
        return reparsed
