"""Interfaces of the subsystems the configuration engine consults.

The queue and the account/credential store are owned by other parts of
the mail server.  Operation handlers only reach them through these
narrow protocols, so tests and the command-line tool can plug in their
own implementations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class MessageSummary:
    """A message waiting in the outgoing queue."""

    id: int
    account: str
    sender: str


@dataclass(frozen=True)
class Suppression:
    """An address the account no longer sends to."""

    account: str
    base_address: str
    reason: str = ""


@dataclass(frozen=True)
class LoginCredential:
    """A stored credential (e.g. TLS client public key) tied to a login address."""

    fingerprint: str
    account: str
    login_address: str
    name: str = ""


class QueueBackend(Protocol):
    """Outgoing queue operations needed by account and address removal."""

    def fail_messages(self, account: str) -> int:
        """Fail all queued messages of *account*, return how many."""
        ...

    def cancel_webhooks(self, account: str) -> int:
        """Cancel all pending webhook calls of *account*, return how many."""
        ...

    def list_messages(self, account: str) -> list[MessageSummary]: ...

    def list_suppressions(self, account: str) -> list[Suppression]: ...

    def remove_suppression(self, account: str, address: str) -> None: ...


class AccountHandle(Protocol):
    name: str

    def clear_sessions(self) -> None: ...

    def mark_for_removal(self) -> None:
        """Schedule the account's data for removal once unreferenced."""
        ...

    def close(self) -> None: ...


class CredentialStore(Protocol):
    """Account storage and stored login credentials."""

    def list_login_credentials(self, account: str | None = None) -> list[LoginCredential]:
        """Return credentials of *account*, or of all accounts when ``None``."""
        ...

    def open_account(self, name: str) -> AccountHandle: ...

    def account_dir_exists(self, name: str) -> bool:
        """Whether data for *name* is still on disk (e.g. pending removal)."""
        ...
