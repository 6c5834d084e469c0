"""Enumerated types for the dynamic configuration.

All enums inherit from ``StrEnum`` so their ``.value`` is the plain
string written to the configuration document.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# DKIM
# ---------------------------------------------------------------------------


class DKIMAlgorithm(StrEnum):
    RSA2048 = "rsa2048"
    ED25519 = "ed25519"

    @classmethod
    def from_name(cls, name: str) -> DKIMAlgorithm:
        """Accept both the stored tag and the short names ``rsa``/``ed25519``."""
        if name == "rsa":
            return cls.RSA2048
        return cls(name)

    @property
    def note_name(self) -> str:
        """Name used in the provenance note of a key file."""
        return "rsa-2048" if self is DKIMAlgorithm.RSA2048 else "ed25519"


class DKIMHash(StrEnum):
    SHA256 = "sha256"
    SHA1 = "sha1"


# ---------------------------------------------------------------------------
# MTA-STS
# ---------------------------------------------------------------------------


class MTASTSMode(StrEnum):
    ENFORCE = "enforce"
    TESTING = "testing"
    NONE = "none"


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TransactionOutcome(StrEnum):
    COMMITTED = "committed"
    REJECTED = "rejected"
    FAILED = "failed"
