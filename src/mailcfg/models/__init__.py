"""Entity models for the dynamic configuration.

All models are frozen dataclasses.  Use :func:`dataclasses.replace`
for modifications (copy-on-write).
"""

from mailcfg.models.account import (
    AccountConfig,
    AliasMembership,
    AutomaticJunkFlags,
    Destination,
    JunkFilter,
    Ruleset,
)
from mailcfg.models.domain import (
    DKIM,
    MTASTS,
    Alias,
    AliasMember,
    Canonicalization,
    DomainConfig,
    ReportingAddress,
    Selector,
)
from mailcfg.models.snapshot import AccountDestination, ConfigSnapshot

__all__ = [
    "DKIM",
    "MTASTS",
    "AccountConfig",
    "AccountDestination",
    "Alias",
    "AliasMember",
    "AliasMembership",
    "AutomaticJunkFlags",
    "Canonicalization",
    "ConfigSnapshot",
    "Destination",
    "DomainConfig",
    "JunkFilter",
    "ReportingAddress",
    "Ruleset",
    "Selector",
]
