"""Referential consistency checks for configuration edits.

Every function here is read-only with respect to the configuration:
it inspects a snapshot (plus queue or credential views handed in by the
caller) and either returns the values the caller needs to build its
edit or raises :class:`~mailcfg.core.errors.RequestError`.

The single exception is :func:`prepare_account_removal`, which drains
the queue for an account.  It has to run *before* the removal
transaction, while the old configuration is still published: failing a
queued message may deliver a delivery-status notification into the very
account that is about to disappear.

:func:`check_snapshot` validates a whole snapshot and is run on every
candidate before it is published and on every document that is parsed.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from mailcfg.core.address import is_catchall, parse_address, parse_domain, parse_localpart
from mailcfg.core.errors import (
    ALREADY_EXISTS,
    LAST_MEMBER,
    MALFORMED,
    NOT_FOUND,
    QUEUE_DEPENDENCY,
    REFERENCED,
    STEP_COLLABORATOR,
    UNSUPPORTED,
    InternalError,
    RequestError,
)
from mailcfg.core.types import DKIMHash
from mailcfg.models.snapshot import assoc

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from mailcfg.backends.base import LoginCredential, MessageSummary, QueueBackend
    from mailcfg.core.address import Address, Domain
    from mailcfg.models.account import AccountConfig
    from mailcfg.models.domain import DomainConfig, Selector
    from mailcfg.models.snapshot import AccountDestination, ConfigSnapshot

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Domains
# ---------------------------------------------------------------------------


def check_domain_removal(
    snapshot: ConfigSnapshot,
    domain: Domain,
    credentials: Iterable[LoginCredential],
) -> DomainConfig:
    """Return the config of *domain* if it may be removed.

    Login credentials whose address is at the domain must be changed or
    removed first.
    """
    domain_config = snapshot.domains.get(domain.name)
    if domain_config is None:
        raise RequestError(NOT_FOUND, "domain does not exist")

    suffix = "@" + domain.name
    for cred in credentials:
        if cred.login_address.endswith(suffix):
            raise RequestError(
                REFERENCED,
                f"domain is still referenced in login credential {cred.fingerprint!r} "
                f"by login address {cred.login_address!r} of account {cred.account!r}, "
                "change or remove it first",
            )
    return domain_config


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


def check_account_removal(snapshot: ConfigSnapshot, account: str) -> AccountConfig:
    """Return the config of *account* if no domain or alias still needs it."""
    account_config = snapshot.accounts.get(account)
    if account_config is None:
        raise RequestError(NOT_FOUND, "account does not exist")
    for domain_name in sorted(snapshot.domains):
        domain_config = snapshot.domains[domain_name]
        for role, reporting in (("dmarc", domain_config.dmarc), ("tlsrpt", domain_config.tlsrpt)):
            if reporting is not None and reporting.account == account:
                raise RequestError(
                    REFERENCED,
                    f"account receives {role} reports for domain {domain_name}, "
                    "change the domain's reporting first",
                )
    if account_config.aliases:
        membership = account_config.aliases[0]
        raise RequestError(
            REFERENCED,
            f"address {membership.subscription_address} of account is member of alias "
            f"{membership.alias_address}, remove it from the alias first",
        )
    return account_config


def prepare_account_removal(queue: QueueBackend, account: str) -> None:
    """Fail queued work and drop suppressions of *account*.

    Messages are failed rather than dropped: if a later step aborts the
    removal, the account is still intact and has received its
    notifications.

    Raises
    ------
    InternalError
        If the queue subsystem reports an error; the configuration must
        then be left untouched.

    """
    try:
        nfailed = queue.fail_messages(account)
    except Exception as exc:
        raise InternalError(
            STEP_COLLABORATOR,
            f"failing queued messages for account before removing: {exc}",
        ) from exc
    if nfailed > 0:
        log.info("Failed %d queued messages for removed account %s", nfailed, account)

    try:
        ncanceled = queue.cancel_webhooks(account)
    except Exception as exc:
        raise InternalError(
            STEP_COLLABORATOR,
            f"canceling queued webhooks for account before removing: {exc}",
        ) from exc
    if ncanceled > 0:
        log.info("Canceled %d queued webhooks for removed account %s", ncanceled, account)

    try:
        suppressions = queue.list_suppressions(account)
    except Exception as exc:
        raise InternalError(
            STEP_COLLABORATOR,
            f"listing suppressed addresses for account: {exc}",
        ) from exc
    for sup in suppressions:
        try:
            queue.remove_suppression(account, sup.base_address)
        except Exception as exc:
            raise InternalError(
                STEP_COLLABORATOR,
                f"removing suppression {sup.base_address!r} for account: {exc}",
            ) from exc


# ---------------------------------------------------------------------------
# Addresses
# ---------------------------------------------------------------------------


def check_address_available(snapshot: ConfigSnapshot, addr: Address) -> None:
    """Check that *addr* can be added as a new destination.

    The canonicalized address must not be configured yet, must not be
    in use as an alias, and the local-part must not contain one of the
    domain's catchall separators.
    """
    domain_config = snapshot.domains.get(addr.domain.name)
    if domain_config is None:
        raise RequestError(NOT_FOUND, "domain does not exist")

    lp = domain_config.canonical_localpart(addr.localpart)
    canonical = f"{lp}@{addr.domain.name}"
    if canonical in snapshot.account_destinations:
        raise RequestError(
            ALREADY_EXISTS,
            f"canonicalized address {canonical} already configured",
        )
    for sep in domain_config.localpart_catchall_separators:
        if sep in addr.localpart:
            raise RequestError(
                MALFORMED,
                f"localpart cannot include domain catchall separator {sep}",
            )
    aliases = {domain_config.canonical_localpart(k) for k in domain_config.aliases}
    if lp in aliases:
        raise RequestError(ALREADY_EXISTS, f"address {canonical} in use as alias")


def check_catchall_available(snapshot: ConfigSnapshot, domain: Domain) -> str:
    """Return the ``@domain`` destination key if no catchall exists yet."""
    if domain.name not in snapshot.domains:
        raise RequestError(NOT_FOUND, "domain does not exist")
    key = "@" + domain.name
    if key in snapshot.account_destinations:
        raise RequestError(ALREADY_EXISTS, "catchall address already configured for domain")
    return key


def check_address_login_credentials(
    snapshot: ConfigSnapshot,
    address: str,
    credentials: Iterable[LoginCredential],
) -> None:
    """Refuse removal while a stored credential logs in with *address*.

    For a catchall, credentials whose login address at the domain is
    only covered by the catchall are refused as well.
    """
    target = snapshot.canonical_address(address)
    for cred in credentials:
        login = snapshot.canonical_address(cred.login_address)
        if login is None:
            raise RequestError(
                MALFORMED,
                f"cannot resolve login address {cred.login_address!r} of "
                f"credential {cred.fingerprint!r}",
            )
        if is_catchall(address):
            covered = login.endswith(target) and login not in snapshot.account_destinations
        else:
            covered = login == target
        if covered:
            raise RequestError(
                REFERENCED,
                f"login credential {cred.fingerprint!r} references this address as "
                f"login address {cred.login_address!r}, remove the credential "
                "before removing the address",
            )


def check_queue_for_address_removal(
    snapshot: ConfigSnapshot,
    address: str,
    destination: AccountDestination,
    messages: Iterable[MessageSummary],
) -> None:
    """Refuse removal if a queued message's sender depends on *address*.

    Removing a catchall: every queued sender must still be configured
    explicitly for the account.  Removing a plain address: a queued
    message sent from it needs a catchall of the same account.
    """
    target = snapshot.canonical_address(address)
    index = snapshot.account_destinations
    for msg in messages:
        try:
            sender = parse_address(msg.sender)
        except RequestError as exc:
            raise RequestError(
                MALFORMED,
                f"invalid sender address {msg.sender!r} in queued message {msg.id}",
            ) from exc
        domain_config = snapshot.domains.get(sender.domain.name)
        if domain_config is None:
            raise RequestError(
                NOT_FOUND,
                f"unknown sender domain {sender.domain.name!r} in queued message",
            )
        sa = f"{domain_config.canonical_localpart(sender.localpart)}@{sender.domain.name}"
        if is_catchall(address):
            explicit = index.get(sa)
            if explicit is None or explicit.account != destination.account:
                raise RequestError(
                    QUEUE_DEPENDENCY,
                    f"message delivery queue contains message with sender address {sa!r} "
                    "that depends on the catchall address, drop message from queue first",
                )
        else:
            catchall = index.get("@" + sender.domain.name)
            covered = catchall is not None and catchall.account == destination.account
            if not covered and sa == target:
                raise RequestError(
                    QUEUE_DEPENDENCY,
                    f"message delivery queue contains message with sender address {sa!r} "
                    "and no catchall address is configured, drop message from queue first",
                )


def remove_alias_memberships(
    snapshot: ConfigSnapshot,
    account: AccountConfig,
    address: str,
) -> Mapping[str, DomainConfig]:
    """Return the domains mapping with *address* dropped from all aliases.

    Members are compared after canonicalization.  Raises if the address
    is the last member of one of the aliases.
    """
    target = snapshot.canonical_address(address)
    domains: Mapping[str, DomainConfig] = snapshot.domains
    for membership in account.aliases:
        if snapshot.canonical_address(membership.subscription_address) != target:
            continue
        alias_addr = membership.alias_address
        domain_config = domains.get(membership.alias_domain)
        if domain_config is None:
            msg = f"cannot find domain for alias {alias_addr}"
            raise RequestError(NOT_FOUND, msg)
        alias = domain_config.aliases.get(membership.alias_localpart)
        if alias is None:
            raise RequestError(NOT_FOUND, f"cannot find alias {alias_addr}")
        remaining = tuple(
            a for a in alias.addresses if snapshot.canonical_address(a) != target
        )
        if not remaining:
            raise RequestError(
                LAST_MEMBER,
                f"address is last member of alias {alias_addr}, add new members "
                "or remove alias first",
            )
        new_alias = replace(alias, addresses=remaining, members=())
        domain_config = replace(
            domain_config,
            aliases=assoc(domain_config.aliases, membership.alias_localpart, new_alias),
        )
        domains = assoc(domains, membership.alias_domain, domain_config)
    return domains


# ---------------------------------------------------------------------------
# Aliases
# ---------------------------------------------------------------------------


def check_alias_members_remaining(alias_address: str, addresses: tuple[str, ...]) -> None:
    if not addresses:
        raise RequestError(
            LAST_MEMBER,
            f"alias {alias_address} must keep at least one member, remove the alias instead",
        )


# ---------------------------------------------------------------------------
# DKIM
# ---------------------------------------------------------------------------


def check_dkim_selector_addition(
    snapshot: ConfigSnapshot,
    domain: Domain,
    selector: Domain,
    hash_name: str,
) -> tuple[DomainConfig, DKIMHash]:
    """Return the domain config and parsed hash if the selector may be added."""
    try:
        hash_alg = DKIMHash(hash_name)
    except ValueError:
        raise RequestError(UNSUPPORTED, f"unknown hash algorithm {hash_name!r}") from None
    domain_config = snapshot.domains.get(domain.name)
    if domain_config is None:
        raise RequestError(NOT_FOUND, "domain does not exist")
    if selector.name in domain_config.dkim.selectors:
        raise RequestError(ALREADY_EXISTS, "selector already exists for domain")
    return domain_config, hash_alg


def check_dkim_selector_removal(
    snapshot: ConfigSnapshot,
    domain: Domain,
    selector: Domain,
) -> tuple[DomainConfig, Selector]:
    domain_config = snapshot.domains.get(domain.name)
    if domain_config is None:
        raise RequestError(NOT_FOUND, "domain does not exist")
    sel = domain_config.dkim.selectors.get(selector.name)
    if sel is None:
        raise RequestError(NOT_FOUND, "selector does not exist for domain")
    return domain_config, sel


# ---------------------------------------------------------------------------
# Whole snapshot
# ---------------------------------------------------------------------------


def check_snapshot(snapshot: ConfigSnapshot) -> list[str]:  # noqa: C901, PLR0912
    """Return every invariant violation found in *snapshot*."""
    errors: list[str] = []

    for name in snapshot.domains:
        try:
            if parse_domain(name).name != name:
                errors.append(f"domain {name!r}: name is not in normalized form")
        except RequestError as exc:
            errors.append(f"domain {name!r}: {exc.detail}")

    # Explicit destinations: parse, resolve and check global uniqueness.
    seen: dict[str, str] = {}
    for account_name in sorted(snapshot.accounts):
        account = snapshot.accounts[account_name]
        where = f"account {account_name!r}"
        if account.domain not in snapshot.domains:
            errors.append(f"{where}: unknown domain {account.domain!r}")
        for address in account.destinations:
            if is_catchall(address):
                try:
                    dname = parse_domain(address[1:]).name
                except RequestError as exc:
                    errors.append(f"{where}: catchall {address!r}: {exc.detail}")
                    continue
                if dname not in snapshot.domains:
                    errors.append(f"{where}: catchall {address!r}: unknown domain")
                    continue
                key = "@" + dname
            else:
                try:
                    addr = parse_address(address)
                except RequestError as exc:
                    errors.append(f"{where}: destination {address!r}: {exc.detail}")
                    continue
                domain_config = snapshot.domains.get(addr.domain.name)
                if domain_config is None:
                    errors.append(f"{where}: destination {address!r}: unknown domain")
                    continue
                for sep in domain_config.localpart_catchall_separators:
                    if sep in addr.localpart:
                        errors.append(
                            f"{where}: destination {address!r}: localpart cannot "
                            f"include domain catchall separator {sep}",
                        )
                key = f"{domain_config.canonical_localpart(addr.localpart)}@{addr.domain.name}"
            other = seen.get(key)
            if other is not None:
                errors.append(
                    f"{where}: destination {address!r} canonicalizes to {key}, "
                    f"already configured for account {other!r}",
                )
                continue
            seen[key] = account_name

        for login in account.from_id_login_addresses:
            dest = snapshot.resolve(login)
            if dest is None or dest.account != account_name:
                errors.append(
                    f"{where}: login address {login!r} does not resolve to a "
                    "destination of the account",
                )

    for domain_name in sorted(snapshot.domains):
        domain_config = snapshot.domains[domain_name]
        where = f"domain {domain_name!r}"

        dkim = domain_config.dkim
        for sel_name, sel in dkim.selectors.items():
            try:
                parse_domain(sel_name)
            except RequestError as exc:
                errors.append(f"{where}: selector {sel_name!r}: {exc.detail}")
            if not sel.private_key_file:
                errors.append(f"{where}: selector {sel_name!r}: missing private key file")
            if not isinstance(sel.hash, DKIMHash):
                errors.append(f"{where}: selector {sel_name!r}: unknown hash {sel.hash!r}")
        if len(set(dkim.sign)) != len(dkim.sign):
            errors.append(f"{where}: duplicate selector in signing list")
        for sel_name in dkim.sign:
            if sel_name not in dkim.selectors:
                errors.append(f"{where}: signing selector {sel_name!r} is not configured")

        for role, reporting in (("dmarc", domain_config.dmarc), ("tlsrpt", domain_config.tlsrpt)):
            if reporting is None:
                continue
            if reporting.account not in snapshot.accounts:
                errors.append(
                    f"{where}: {role} reporting account {reporting.account!r} does not exist",
                )
            lp = domain_config.canonical_localpart(reporting.localpart)
            key = f"{lp}@{domain_name}"
            if key in seen:
                errors.append(
                    f"{where}: {role} reporting address {key} is also configured "
                    f"as destination of account {seen[key]!r}",
                )

        alias_keys = set()
        for localpart, alias in domain_config.aliases.items():
            alias_addr = f"{localpart}@{domain_name}"
            try:
                parse_localpart(localpart)
            except RequestError as exc:
                errors.append(f"{where}: alias {alias_addr!r}: {exc.detail}")
                continue
            lp = domain_config.canonical_localpart(localpart)
            if lp in alias_keys:
                errors.append(f"{where}: alias {alias_addr!r}: duplicate after canonicalization")
            alias_keys.add(lp)
            if f"{lp}@{domain_name}" in snapshot.account_destinations:
                errors.append(f"{where}: alias {alias_addr!r}: collides with account destination")
            if not alias.addresses:
                errors.append(f"{where}: alias {alias_addr!r}: must have at least one member")
            if len(set(alias.addresses)) != len(alias.addresses):
                errors.append(f"{where}: alias {alias_addr!r}: duplicate member addresses")
            for member in alias.addresses:
                if is_catchall(member) or snapshot.resolve(member) is None:
                    errors.append(
                        f"{where}: alias {alias_addr!r}: member {member!r} is not "
                        "a configured address",
                    )

    return errors
