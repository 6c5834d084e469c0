"""Account service: add, remove and edit accounts of the dynamic config."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from mailcfg.core.errors import (
    ALREADY_EXISTS,
    MALFORMED,
    STEP_COLLABORATOR,
    InternalError,
    RequestError,
)
from mailcfg.logging import audit_events
from mailcfg.models.account import AccountConfig, AutomaticJunkFlags, Destination, JunkFilter
from mailcfg.validation.consistency import (
    check_account_removal,
    check_address_available,
    prepare_account_removal,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from mailcfg.backends.base import CredentialStore, QueueBackend
    from mailcfg.core.address import Address
    from mailcfg.models.snapshot import ConfigSnapshot
    from mailcfg.services.transaction import TransactionRunner

log = logging.getLogger(__name__)

# Account names become directory names in the data directory.
_ACCOUNT_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._@+-]{0,127}$")

_SUBJECT_PASS_PERIOD_SECONDS = 12 * 3600


def validate_account_name(name: str) -> str:
    if not _ACCOUNT_NAME_RE.match(name):
        raise RequestError(MALFORMED, f"invalid account name {name!r}")
    return name


def make_account_config(address: Address) -> AccountConfig:
    """Return the settings of a new account receiving mail for *address*.

    The account gets a rejects mailbox, a junk filter with standard
    parameters and automatic junk flagging by mailbox name.
    """
    return AccountConfig(
        domain=address.domain.name,
        destinations={str(address): Destination()},
        rejects_mailbox="Rejects",
        junk_filter=JunkFilter(
            threshold=0.95,
            onegrams=True,
            max_power=0.01,
            top_words=10,
            ignore_words=0.1,
            rare_words=2,
        ),
        automatic_junk_flags=AutomaticJunkFlags(
            enabled=True,
            junk_mailbox_regexp="^(junk|spam)",
            neutral_mailbox_regexp="^(inbox|neutral|postmaster|dmarc|tlsrpt|rejects)",
        ),
        subject_pass_period_seconds=_SUBJECT_PASS_PERIOD_SECONDS,
        no_custom_password=True,
    )


class AccountService:
    """Manage accounts.

    Parameters
    ----------
    runner:
        Transaction runner of the configuration store.
    queue:
        Outgoing queue, drained before an account is removed.
    credentials:
        Account storage and stored login credentials.

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

    def add(self, account: str, address: Address) -> ConfigSnapshot:
        """Add *account* with *address* as its first destination.

        The new account has no password and cannot log in yet, but mail
        to the address is delivered.  Catchall addresses are added
        separately with :meth:`AddressService.add`.
        """
        validate_account_name(account)
        with self._runner.transaction("account_add", account=account, address=str(address)) as txn:
            if account in txn.base.accounts:
                raise RequestError(ALREADY_EXISTS, "account already present")
            # Data of a removed account may still be pending removal.
            if self._credentials.account_dir_exists(account):
                raise RequestError(
                    ALREADY_EXISTS,
                    f"account directory for {account!r} already/still exists",
                )
            check_address_available(txn.base, address)
            result = txn.commit(txn.base.with_account(account, make_account_config(address)))

        log.info("Account added: %s (%s)", account, address)
        audit_events.account_added(account, str(address))
        return result

    def remove(self, account: str) -> ConfigSnapshot:
        """Remove *account* and schedule its data for removal.

        Queued messages of the account are failed and its webhooks
        canceled before the configuration changes, while the account
        can still receive delivery notifications.  If draining the
        queue fails the configuration is left untouched.
        """
        check_account_removal(self._runner.store.snapshot(), account)

        try:
            handle = self._credentials.open_account(account)
        except Exception as exc:
            raise InternalError(STEP_COLLABORATOR, f"opening account {account!r}: {exc}") from exc

        try:
            prepare_account_removal(self._queue, account)

            with self._runner.transaction("account_remove", account=account) as txn:
                check_account_removal(txn.base, account)
                result = txn.commit(txn.base.without_account(account))

            log.info("Account removed from configuration: %s", account)
            audit_events.account_removed(account)

            try:
                handle.mark_for_removal()
            except Exception as exc:
                msg = (
                    "account removed from configuration, but scheduling account "
                    f"data for removal failed: {exc}"
                )
                raise InternalError(STEP_COLLABORATOR, msg) from exc
            log.info("Account %s marked for removal", account)
        finally:
            try:
                handle.clear_sessions()
            except Exception:
                log.exception("Failed to clear login sessions of account %s", account)
            try:
                handle.close()
            except Exception:
                log.exception("Failed to close account %s", account)
        return result

    def save(
        self,
        account: str,
        modify: Callable[[AccountConfig], AccountConfig],
    ) -> ConfigSnapshot:
        """Replace the settings of *account* with ``modify(current)``."""
        result = self._runner.edit_account(account, modify)
        log.info("Account saved: %s", account)
        audit_events.account_saved(account)
        return result
