"""Audit events for configuration changes.

Every committed mutation emits one event to the ``mailcfg.audit``
logger with a consistent ``event_id`` field for filtering.  Extra data
is passed through :func:`~mailcfg.logging.sanitize.sanitize_for_logs`
so key material never reaches the audit log.
"""

from __future__ import annotations

import logging
from typing import Any

from mailcfg.logging.sanitize import sanitize_for_logs

audit_log = logging.getLogger("mailcfg.audit")


def _emit(
    event_id: str,
    message: str,
    *args: Any,  # noqa: ANN401
    severity: str = "INFO",
    **extra: Any,  # noqa: ANN401
) -> None:
    """Emit a structured audit event."""
    data: dict[str, object] = {
        "event_id": event_id,
        "severity": severity,
    }
    data.update(sanitize_for_logs(extra))
    level = getattr(logging, severity.upper(), logging.INFO)
    audit_log.log(level, message, *args, extra=data)


# ---------------------------------------------------------------------------
# Domains
# ---------------------------------------------------------------------------


def domain_added(domain: str, account: str, selectors: list[str]) -> None:
    _emit(
        "mailcfg.audit.domain_added",
        "Domain added: %s",
        domain,
        domain=domain,
        account=account,
        selectors=selectors,
    )


def domain_removed(domain: str, retired_keys: list[str]) -> None:
    _emit(
        "mailcfg.audit.domain_removed",
        "Domain removed: %s",
        domain,
        domain=domain,
        retired_keys=retired_keys,
        severity="WARNING",
    )


def domain_saved(domain: str) -> None:
    _emit("mailcfg.audit.domain_saved", "Domain saved: %s", domain, domain=domain)


# ---------------------------------------------------------------------------
# Accounts and addresses
# ---------------------------------------------------------------------------


def account_added(account: str, address: str) -> None:
    _emit(
        "mailcfg.audit.account_added",
        "Account added: %s",
        account,
        account=account,
        address=address,
    )


def account_removed(account: str) -> None:
    _emit(
        "mailcfg.audit.account_removed",
        "Account removed: %s",
        account,
        account=account,
        severity="WARNING",
    )


def account_saved(account: str) -> None:
    _emit("mailcfg.audit.account_saved", "Account saved: %s", account, account=account)


def address_added(address: str, account: str) -> None:
    _emit(
        "mailcfg.audit.address_added",
        "Address added: %s -> %s",
        address,
        account,
        address=address,
        account=account,
    )


def address_removed(address: str, account: str) -> None:
    _emit(
        "mailcfg.audit.address_removed",
        "Address removed: %s (account %s)",
        address,
        account,
        address=address,
        account=account,
    )


# ---------------------------------------------------------------------------
# Aliases
# ---------------------------------------------------------------------------


def alias_changed(action: str, alias: str, addresses: list[str] | None = None) -> None:
    """Log an alias change; *action* is ``added``, ``updated``, ``removed``,
    ``members_added`` or ``members_removed``.
    """
    _emit(
        f"mailcfg.audit.alias_{action}",
        "Alias %s: %s",
        action.replace("_", " "),
        alias,
        alias=alias,
        addresses=addresses or [],
    )


# ---------------------------------------------------------------------------
# DKIM
# ---------------------------------------------------------------------------


def dkim_selector_added(domain: str, selector: str, algorithm: str, key_file: str) -> None:
    _emit(
        "mailcfg.audit.dkim_selector_added",
        "DKIM selector added: %s._domainkey.%s",
        selector,
        domain,
        domain=domain,
        selector=selector,
        algorithm=algorithm,
        key_file=key_file,
    )


def dkim_selector_removed(domain: str, selector: str, retired_keys: list[str]) -> None:
    _emit(
        "mailcfg.audit.dkim_selector_removed",
        "DKIM selector removed: %s._domainkey.%s",
        selector,
        domain,
        domain=domain,
        selector=selector,
        retired_keys=retired_keys,
        severity="WARNING",
    )


# ---------------------------------------------------------------------------
# Whole configuration
# ---------------------------------------------------------------------------


def config_saved() -> None:
    _emit("mailcfg.audit.config_saved", "Dynamic configuration saved")


def config_created(path: str, domain: str, account: str) -> None:
    _emit(
        "mailcfg.audit.config_created",
        "Initial configuration written to %s",
        path,
        path=path,
        domain=domain,
        account=account,
    )
