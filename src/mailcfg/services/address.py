"""Address service: add and remove account destinations.

Destinations are addresses (``alice@example.org``) or catchalls for a
whole domain, given as a parsed :class:`~mailcfg.core.address.Domain`
and stored as ``@example.org``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from mailcfg.core.address import Domain, destination_key, is_catchall, parse_address
from mailcfg.core.errors import (
    NOT_FOUND,
    REFERENCED,
    STEP_COLLABORATOR,
    InternalError,
    RequestError,
)
from mailcfg.logging import audit_events
from mailcfg.models.account import Destination
from mailcfg.models.snapshot import assoc, dissoc
from mailcfg.validation.consistency import (
    check_address_available,
    check_address_login_credentials,
    check_catchall_available,
    check_queue_for_address_removal,
    remove_alias_memberships,
)

if TYPE_CHECKING:
    from mailcfg.backends.base import CredentialStore, QueueBackend
    from mailcfg.core.address import Address
    from mailcfg.models.account import AccountConfig
    from mailcfg.models.snapshot import AccountDestination, ConfigSnapshot
    from mailcfg.services.transaction import TransactionRunner

log = logging.getLogger(__name__)


def _remaining_login_addresses(
    snapshot: ConfigSnapshot,
    account: AccountConfig,
    key: str,
) -> tuple[str, ...]:
    """Login addresses of *account* still valid once *key* is removed."""
    target = snapshot.canonical_address(key)
    catchall_domain = key[1:] if is_catchall(key) else None
    kept = []
    for login in account.from_id_login_addresses:
        if catchall_domain is not None:
            if parse_address(login).domain.name != catchall_domain:
                kept.append(login)
        elif snapshot.canonical_address(login) != target:
            kept.append(login)
    return tuple(kept)


def _find_destination_key(
    snapshot: ConfigSnapshot,
    account: AccountConfig,
    dest: AccountDestination,
    key: str,
) -> str:
    target = snapshot.canonical_address(key)
    for existing in account.destinations:
        if snapshot.canonical_address(existing) == target:
            return existing
    if dest.role:
        raise RequestError(
            REFERENCED,
            f"address not removed, it is the {dest.role} reporting address of its domain, "
            f"change the domain's {dest.role} configuration first",
        )
    raise RequestError(REFERENCED, "address not removed, likely a postmaster/reporting address")


class AddressService:
    """Manage the destinations of accounts.

    Parameters
    ----------
    runner:
        Transaction runner of the configuration store.
    queue:
        Outgoing queue, consulted so removal cannot orphan a queued message.
    credentials:
        Stored login credentials, which must not reference a removed address.

    """

    def __init__(
        self,
        runner: TransactionRunner,
        queue: QueueBackend,
        credentials: CredentialStore,
    ) -> None:
        self._runner = runner
        self._queue = queue
        self._credentials = credentials

    def add(self, address: Address | Domain, account: str) -> ConfigSnapshot:
        """Add *address* (or a catchall for a domain) to *account*."""
        with self._runner.transaction(
            "address_add",
            address=destination_key(address),
            account=account,
        ) as txn:
            base = txn.base
            acc = base.accounts.get(account)
            if acc is None:
                raise RequestError(NOT_FOUND, "account does not exist")

            if isinstance(address, Domain):
                key = check_catchall_available(base, address)
            else:
                check_address_available(base, address)
                key = str(address)

            updated = replace(acc, destinations=assoc(acc.destinations, key, Destination()))
            result = txn.commit(base.with_account(account, updated))

        log.info("Address added: %s -> %s", key, account)
        audit_events.address_added(key, account)
        return result

    def remove(self, address: Address | Domain) -> ConfigSnapshot:
        """Remove *address* from the account it delivers to.

        The address is also dropped from the account's login addresses
        and from every alias it is a member of.  Refused while a stored
        login credential or a queued message depends on the address, or
        when it is the last member of an alias.
        """
        key = destination_key(address)
        with self._runner.transaction("address_remove", address=key) as txn:
            base = txn.base
            dest = base.resolve(key)
            if dest is None:
                raise RequestError(NOT_FOUND, "address does not exist")
            acc = base.accounts.get(dest.account)
            if acc is None:
                raise RequestError(NOT_FOUND, f"account {dest.account!r} does not exist")

            dest_key = _find_destination_key(base, acc, dest, key)

            try:
                credentials = self._credentials.list_login_credentials(dest.account)
            except Exception as exc:
                msg = f"listing login credentials for account: {exc}"
                raise InternalError(STEP_COLLABORATOR, msg) from exc
            check_address_login_credentials(base, dest_key, credentials)

            domains = remove_alias_memberships(base, acc, dest_key)

            try:
                messages = self._queue.list_messages(dest.account)
            except Exception as exc:
                msg = f"listing messages in queue for account: {exc}"
                raise InternalError(STEP_COLLABORATOR, msg) from exc
            check_queue_for_address_removal(base, dest_key, dest, messages)

            updated = replace(
                acc,
                destinations=dissoc(acc.destinations, dest_key),
                from_id_login_addresses=_remaining_login_addresses(base, acc, dest_key),
            )
            candidate = replace(base, domains=domains).with_account(dest.account, updated)
            result = txn.commit(candidate)

        log.info("Address removed: %s (account %s)", dest_key, dest.account)
        audit_events.address_removed(dest_key, dest.account)
        return result
