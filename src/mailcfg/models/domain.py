"""Domain configuration entities: DKIM, reporting addresses, aliases."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from mailcfg.core.types import DKIMAlgorithm, DKIMHash, MTASTSMode

# ---------------------------------------------------------------------------
# DKIM
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Canonicalization:
    header_relaxed: bool = False
    body_relaxed: bool = False


@dataclass(frozen=True)
class Selector:
    """One DKIM signing key, published under ``<name>._domainkey.<domain>``.

    ``private_key_file`` is relative to the configuration directory.
    """

    private_key_file: str
    algorithm: DKIMAlgorithm = DKIMAlgorithm.RSA2048
    hash: DKIMHash = DKIMHash.SHA256
    canonicalization: Canonicalization = field(default_factory=Canonicalization)
    headers: tuple[str, ...] = ()
    dont_seal_headers: bool = False
    expiration: str = "72h"


@dataclass(frozen=True)
class DKIM:
    """Selectors of a domain and the ordered list of those that sign."""

    selectors: Mapping[str, Selector] = field(default_factory=dict)
    sign: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Reporting / policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReportingAddress:
    """Address at the domain where DMARC or TLS reports are delivered."""

    account: str
    localpart: str
    mailbox: str


@dataclass(frozen=True)
class MTASTS:
    policy_id: str
    mode: MTASTSMode
    max_age_seconds: int
    mx: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Aliases
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AliasMember:
    """A resolved alias member: the address and the account it delivers to."""

    address: str
    account: str


@dataclass(frozen=True)
class Alias:
    """Group address fanning out to member addresses.

    ``members`` is derived when the document is parsed and is not part
    of equality; edits only touch ``addresses``.
    """

    addresses: tuple[str, ...]
    post_public: bool = False
    list_members: bool = False
    allow_msg_from: bool = False
    members: tuple[AliasMember, ...] = field(default=(), compare=False)


# ---------------------------------------------------------------------------
# Domain
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DomainConfig:
    description: str = ""
    client_settings_domain: str = ""
    localpart_catchall_separators: tuple[str, ...] = ()
    localpart_case_sensitive: bool = False
    dkim: DKIM = field(default_factory=DKIM)
    dmarc: ReportingAddress | None = None
    tlsrpt: ReportingAddress | None = None
    mta_sts: MTASTS | None = None
    aliases: Mapping[str, Alias] = field(default_factory=dict)
    disabled: bool = False

    def canonical_localpart(self, localpart: str) -> str:
        """Strip any catchall suffix and fold case unless case-sensitive."""
        for sep in self.localpart_catchall_separators:
            localpart = localpart.split(sep, 1)[0]
        if not self.localpart_case_sensitive:
            localpart = localpart.lower()
        return localpart
