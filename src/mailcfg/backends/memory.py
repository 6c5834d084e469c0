"""In-process implementations of the collaborator protocols.

Used by the command-line tool when the mail server is not running (its
queue is then empty) and by tests, which fill them with messages,
suppressions and credentials.
"""

from __future__ import annotations

import itertools
import logging
import threading

from mailcfg.backends.base import LoginCredential, MessageSummary, Suppression

log = logging.getLogger(__name__)


class MemoryQueue:
    """Outgoing queue state kept in dictionaries keyed by account."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._messages: dict[str, list[MessageSummary]] = {}
        self._webhooks: dict[str, int] = {}
        self._suppressions: dict[str, list[Suppression]] = {}

    # -- test and setup helpers ----------------------------------------------

    def add_message(self, account: str, sender: str) -> MessageSummary:
        with self._lock:
            msg = MessageSummary(id=next(self._ids), account=account, sender=sender)
            self._messages.setdefault(account, []).append(msg)
            return msg

    def add_webhook(self, account: str) -> None:
        with self._lock:
            self._webhooks[account] = self._webhooks.get(account, 0) + 1

    def add_suppression(self, account: str, address: str, reason: str = "") -> None:
        with self._lock:
            self._suppressions.setdefault(account, []).append(
                Suppression(account=account, base_address=address, reason=reason),
            )

    # -- QueueBackend --------------------------------------------------------

    def fail_messages(self, account: str) -> int:
        with self._lock:
            failed = self._messages.pop(account, [])
        for msg in failed:
            log.debug("Failed queued message %d from %s", msg.id, msg.sender)
        return len(failed)

    def cancel_webhooks(self, account: str) -> int:
        with self._lock:
            return self._webhooks.pop(account, 0)

    def list_messages(self, account: str) -> list[MessageSummary]:
        with self._lock:
            return list(self._messages.get(account, []))

    def list_suppressions(self, account: str) -> list[Suppression]:
        with self._lock:
            return list(self._suppressions.get(account, []))

    def remove_suppression(self, account: str, address: str) -> None:
        with self._lock:
            remaining = [
                s for s in self._suppressions.get(account, []) if s.base_address != address
            ]
            if remaining:
                self._suppressions[account] = remaining
            else:
                self._suppressions.pop(account, None)


class MemoryAccountHandle:
    def __init__(self, store: MemoryCredentialStore, name: str) -> None:
        self.name = name
        self._store = store
        self.closed = False

    def clear_sessions(self) -> None:
        self._store.sessions.pop(self.name, None)

    def mark_for_removal(self) -> None:
        self._store.pending_removal.add(self.name)

    def close(self) -> None:
        self.closed = True


class MemoryCredentialStore:
    """Login credentials and account data presence, held in memory."""

    def __init__(self, credentials: list[LoginCredential] | None = None) -> None:
        self.credentials: list[LoginCredential] = list(credentials or [])
        self.account_dirs: set[str] = set()
        self.pending_removal: set[str] = set()
        self.sessions: dict[str, int] = {}

    def add_login_credential(self, credential: LoginCredential) -> None:
        self.credentials.append(credential)

    def list_login_credentials(self, account: str | None = None) -> list[LoginCredential]:
        return [c for c in self.credentials if account is None or c.account == account]

    def open_account(self, name: str) -> MemoryAccountHandle:
        self.account_dirs.add(name)
        return MemoryAccountHandle(self, name)

    def account_dir_exists(self, name: str) -> bool:
        return name in self.account_dirs
