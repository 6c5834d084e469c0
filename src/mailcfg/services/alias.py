"""Alias service: group addresses delivering to member addresses."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from mailcfg.core.errors import ALREADY_EXISTS, MALFORMED, NOT_FOUND, RequestError
from mailcfg.logging import audit_events
from mailcfg.models.snapshot import assoc, dissoc
from mailcfg.validation.consistency import check_alias_members_remaining

if TYPE_CHECKING:
    from collections.abc import Sequence

    from mailcfg.core.address import Address
    from mailcfg.models.domain import Alias, DomainConfig
    from mailcfg.models.snapshot import ConfigSnapshot
    from mailcfg.services.transaction import TransactionRunner

log = logging.getLogger(__name__)


def _check_members(snapshot: ConfigSnapshot, addresses: Sequence[str]) -> None:
    seen = set()
    for address in addresses:
        if snapshot.resolve(address) is None or address.startswith("@"):
            raise RequestError(NOT_FOUND, f"member address {address} is not configured")
        canonical = snapshot.canonical_address(address)
        if canonical in seen:
            raise RequestError(ALREADY_EXISTS, f"member address {address} listed twice")
        seen.add(canonical)


def _get_alias(domain: DomainConfig, address: Address) -> Alias:
    alias = domain.aliases.get(address.localpart)
    if alias is None:
        raise RequestError(NOT_FOUND, "alias does not exist")
    return alias


class AliasService:
    """Manage aliases of domains."""

    def __init__(self, runner: TransactionRunner) -> None:
        self._runner = runner

    def add(self, address: Address, alias: Alias) -> ConfigSnapshot:
        """Create alias *address* with the members and flags of *alias*."""
        name = address.domain.name
        with self._runner.transaction("alias_add", alias=str(address)) as txn:
            base = txn.base
            domain = base.domains.get(name)
            if domain is None:
                raise RequestError(NOT_FOUND, "domain does not exist")
            if address.localpart in domain.aliases:
                raise RequestError(ALREADY_EXISTS, "alias already present")
            if base.resolve(str(address)) is not None:
                raise RequestError(ALREADY_EXISTS, f"address {address} in use by an account")
            for sep in domain.localpart_catchall_separators:
                if sep in address.localpart:
                    raise RequestError(
                        MALFORMED,
                        f"alias localpart cannot include domain catchall separator {sep}",
                    )
            check_alias_members_remaining(str(address), alias.addresses)
            _check_members(base, alias.addresses)

            new_alias = replace(alias, addresses=tuple(alias.addresses), members=())
            updated = replace(domain, aliases=assoc(domain.aliases, address.localpart, new_alias))
            result = txn.commit(base.with_domain(name, updated))

        audit_events.alias_changed("added", str(address), list(alias.addresses))
        return result

    def update(
        self,
        address: Address,
        *,
        post_public: bool,
        list_members: bool,
        allow_msg_from: bool,
    ) -> ConfigSnapshot:
        """Change the flags of an alias; members are left alone."""

        def modify(domain: DomainConfig) -> DomainConfig:
            alias = replace(
                _get_alias(domain, address),
                post_public=post_public,
                list_members=list_members,
                allow_msg_from=allow_msg_from,
            )
            return replace(domain, aliases=assoc(domain.aliases, address.localpart, alias))

        result = self._runner.edit_domain(address.domain.name, modify, action="alias_update")
        audit_events.alias_changed("updated", str(address))
        return result

    def remove(self, address: Address) -> ConfigSnapshot:
        def modify(domain: DomainConfig) -> DomainConfig:
            _get_alias(domain, address)
            return replace(domain, aliases=dissoc(domain.aliases, address.localpart))

        result = self._runner.edit_domain(address.domain.name, modify, action="alias_remove")
        audit_events.alias_changed("removed", str(address))
        return result

    def add_addresses(self, address: Address, addresses: Sequence[str]) -> ConfigSnapshot:
        """Append *addresses* to the members of the alias."""
        if not addresses:
            raise RequestError(MALFORMED, "at least one address required")
        name = address.domain.name
        with self._runner.transaction("alias_add_addresses", alias=str(address)) as txn:
            base = txn.base
            domain = base.domains.get(name)
            if domain is None:
                raise RequestError(NOT_FOUND, "domain does not exist")
            alias = _get_alias(domain, address)
            members = alias.addresses + tuple(addresses)
            _check_members(base, members)

            new_alias = replace(alias, addresses=members, members=())
            updated = replace(domain, aliases=assoc(domain.aliases, address.localpart, new_alias))
            result = txn.commit(base.with_domain(name, updated))

        audit_events.alias_changed("members_added", str(address), list(addresses))
        return result

    def remove_addresses(self, address: Address, addresses: Sequence[str]) -> ConfigSnapshot:
        """Drop *addresses* from the members of the alias.

        Every address must be a member, and at least one member must
        remain.
        """
        if not addresses:
            raise RequestError(MALFORMED, "need at least one address")

        def modify(domain: DomainConfig) -> DomainConfig:
            alias = _get_alias(domain, address)
            missing = [a for a in addresses if a not in alias.addresses]
            if missing:
                raise RequestError(NOT_FOUND, f"address not found: {', '.join(missing)}")
            remaining = tuple(a for a in alias.addresses if a not in addresses)
            check_alias_members_remaining(str(address), remaining)
            new_alias = replace(alias, addresses=remaining, members=())
            return replace(domain, aliases=assoc(domain.aliases, address.localpart, new_alias))

        result = self._runner.edit_domain(
            address.domain.name,
            modify,
            action="alias_remove_addresses",
        )
        audit_events.alias_changed("members_removed", str(address), list(addresses))
        return result
