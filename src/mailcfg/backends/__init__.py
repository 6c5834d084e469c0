"""Collaborators consulted by configuration operations."""

from mailcfg.backends.base import (
    AccountHandle,
    CredentialStore,
    LoginCredential,
    MessageSummary,
    QueueBackend,
    Suppression,
)
from mailcfg.backends.filesystem import FileAccountStore
from mailcfg.backends.memory import MemoryCredentialStore, MemoryQueue

__all__ = [
    "AccountHandle",
    "CredentialStore",
    "FileAccountStore",
    "LoginCredential",
    "MemoryCredentialStore",
    "MemoryQueue",
    "MessageSummary",
    "QueueBackend",
    "Suppression",
]
