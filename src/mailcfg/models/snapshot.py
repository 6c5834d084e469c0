"""The immutable configuration snapshot.

A snapshot is never modified after it is published.  Edits build a new
snapshot through :meth:`ConfigSnapshot.with_domain` and friends, which
copy only the top-level mapping being changed and share every untouched
domain and account record with the base snapshot.

Derived lookups (:attr:`ConfigSnapshot.account_destinations`,
:attr:`ConfigSnapshot.used_key_paths`) are computed lazily per snapshot
and are not part of equality.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from functools import cached_property
from typing import TYPE_CHECKING, TypeVar

from mailcfg.core.address import is_catchall, parse_address, parse_domain
from mailcfg.core.errors import RequestError

if TYPE_CHECKING:
    from mailcfg.models.account import AccountConfig
    from mailcfg.models.domain import DomainConfig

_K = TypeVar("_K")
_V = TypeVar("_V")


def assoc(mapping: Mapping[_K, _V], key: _K, value: _V) -> dict[_K, _V]:
    """Return a shallow copy of *mapping* with *key* set to *value*."""
    result = dict(mapping)
    result[key] = value
    return result


def dissoc(mapping: Mapping[_K, _V], key: _K) -> dict[_K, _V]:
    """Return a shallow copy of *mapping* without *key*."""
    return {k: v for k, v in mapping.items() if k != key}


@dataclass(frozen=True)
class AccountDestination:
    """Where a canonical address (or ``@domain`` catchall) delivers to.

    ``role`` is set for addresses reserved by the domain configuration
    (``dmarc`` or ``tlsrpt`` reporting); those are not keys of the
    account's own destinations.
    """

    account: str
    localpart: str
    catchall: bool = False
    role: str = ""


@dataclass(frozen=True)
class ConfigSnapshot:
    domains: Mapping[str, DomainConfig] = field(default_factory=dict)
    accounts: Mapping[str, AccountConfig] = field(default_factory=dict)

    # -- copy-on-write edits -------------------------------------------------

    def with_domain(self, name: str, domain: DomainConfig) -> ConfigSnapshot:
        return replace(self, domains=assoc(self.domains, name, domain))

    def without_domain(self, name: str) -> ConfigSnapshot:
        return replace(self, domains=dissoc(self.domains, name))

    def with_account(self, name: str, account: AccountConfig) -> ConfigSnapshot:
        return replace(self, accounts=assoc(self.accounts, name, account))

    def without_account(self, name: str) -> ConfigSnapshot:
        return replace(self, accounts=dissoc(self.accounts, name))

    # -- derived lookups -----------------------------------------------------

    @cached_property
    def account_destinations(self) -> dict[str, AccountDestination]:
        """Canonical address to destination, for every configured address.

        Invalid or duplicate entries are skipped here (the first one in
        sorted account order wins); :func:`check_snapshot` reports them.
        """
        index: dict[str, AccountDestination] = {}
        for account_name in sorted(self.accounts):
            account = self.accounts[account_name]
            for address in account.destinations:
                key, dest = self._index_entry(account_name, address)
                if key is not None and key not in index:
                    index[key] = dest
        for domain_name in sorted(self.domains):
            domain = self.domains[domain_name]
            for role, reporting in (("dmarc", domain.dmarc), ("tlsrpt", domain.tlsrpt)):
                if reporting is None:
                    continue
                lp = domain.canonical_localpart(reporting.localpart)
                index.setdefault(
                    f"{lp}@{domain_name}",
                    AccountDestination(account=reporting.account, localpart=lp, role=role),
                )
        return index

    def _index_entry(
        self,
        account_name: str,
        address: str,
    ) -> tuple[str | None, AccountDestination | None]:
        try:
            if is_catchall(address):
                domain = parse_domain(address[1:])
                if domain.name not in self.domains:
                    return None, None
                return "@" + domain.name, AccountDestination(
                    account=account_name, localpart="", catchall=True
                )
            parsed = parse_address(address)
        except RequestError:
            return None, None
        domain_config = self.domains.get(parsed.domain.name)
        if domain_config is None:
            return None, None
        lp = domain_config.canonical_localpart(parsed.localpart)
        return f"{lp}@{parsed.domain.name}", AccountDestination(
            account=account_name, localpart=lp
        )

    def canonical_address(self, address: str) -> str | None:
        """Return the index key for *address*, or ``None`` if it cannot resolve."""
        if is_catchall(address):
            try:
                return "@" + parse_domain(address[1:]).name
            except RequestError:
                return None
        try:
            parsed = parse_address(address)
        except RequestError:
            return None
        domain_config = self.domains.get(parsed.domain.name)
        if domain_config is None:
            return None
        return f"{domain_config.canonical_localpart(parsed.localpart)}@{parsed.domain.name}"

    def resolve(self, address: str) -> AccountDestination | None:
        """Look up the destination *address* delivers to, after canonicalization."""
        key = self.canonical_address(address)
        if key is None:
            return None
        return self.account_destinations.get(key)

    @cached_property
    def used_key_paths(self) -> frozenset[str]:
        """Normalised private key paths of all selectors of all domains."""
        return frozenset(
            os.path.normpath(sel.private_key_file)
            for domain in self.domains.values()
            for sel in domain.dkim.selectors.values()
            if sel.private_key_file
        )
