"""Wiring of the configuration store, key material and operation services.

Created once by the command-line tool (or an embedding server) and
passed around as the single entry point for configuration changes.

Usage::

    admin = ConfigAdminService.open(settings, queue, credentials)
    admin.domains.add(parse_domain("example.org"), "alice", localpart="alice")
    admin.dkim.add(parse_domain("example.org"), parse_domain("2027a"), "ed25519")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from mailcfg.core.address import parse_domain
from mailcfg.core.errors import ALREADY_EXISTS, INVALID_CONFIG, RequestError
from mailcfg.keys.material import KeyFileRollback, KeyMaterialManager
from mailcfg.logging import audit_events
from mailcfg.models.snapshot import ConfigSnapshot
from mailcfg.services.account import AccountService, make_account_config, validate_account_name
from mailcfg.services.address import AddressService
from mailcfg.services.alias import AliasService
from mailcfg.services.dkim import DKIMService
from mailcfg.services.domain import DomainService, make_domain_config
from mailcfg.services.transaction import TransactionRunner
from mailcfg.store.config_store import ConfigStore
from mailcfg.validation.consistency import check_snapshot

if TYPE_CHECKING:
    from collections.abc import Callable

    from mailcfg.backends.base import CredentialStore, QueueBackend
    from mailcfg.config.settings import MailcfgSettings
    from mailcfg.core.address import Address
    from mailcfg.metrics.collector import MetricsCollector

log = logging.getLogger(__name__)


class ConfigAdminService:
    """All configuration operations behind one object.

    Parameters
    ----------
    settings:
        Static settings (host name, postmaster, defaults for new domains).
    store:
        The opened dynamic configuration.
    queue:
        Outgoing queue collaborator.
    credentials:
        Account storage and login credential collaborator.
    metrics:
        Optional collector for transaction counts.

    """

    def __init__(  # noqa: PLR0913
        self,
        settings: MailcfgSettings,
        store: ConfigStore,
        queue: QueueBackend,
        credentials: CredentialStore,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.keys = KeyMaterialManager(store.config_dir)
        self.runner = TransactionRunner(store, self.keys, metrics)

        self.domains = DomainService(
            self.runner,
            credentials,
            parse_domain(settings.hostname),
            postmaster=settings.postmaster,
            mta_sts=settings.mta_sts,
            dkim=settings.dkim,
        )
        self.accounts = AccountService(self.runner, queue, credentials)
        self.addresses = AddressService(self.runner, queue, credentials)
        self.aliases = AliasService(self.runner)
        self.dkim = DKIMService(self.runner)

    @classmethod
    def open(
        cls,
        settings: MailcfgSettings,
        queue: QueueBackend,
        credentials: CredentialStore,
        metrics: MetricsCollector | None = None,
    ) -> ConfigAdminService:
        """Load the dynamic configuration named by *settings*."""
        config_dir = Path(settings.paths.config_dir)
        store = ConfigStore.load(settings.paths.dynamic_path, config_dir=config_dir)
        return cls(settings, store, queue, credentials, metrics)

    def snapshot(self) -> ConfigSnapshot:
        return self.store.snapshot()

    def save_config(self, modify: Callable[[ConfigSnapshot], ConfigSnapshot]) -> ConfigSnapshot:
        """Replace the whole configuration with ``modify(current)``."""
        result = self.runner.edit_config(modify)
        log.info("Configuration saved")
        audit_events.config_saved()
        return result


def create_initial_config(
    settings: MailcfgSettings,
    address: Address,
    account: str,
) -> ConfigStore:
    """Write a new dynamic configuration with one domain and one account.

    The domain of *address* is created with fresh DKIM keys, and
    *account* receives mail for *address* and the domain's reports.  If
    anything fails, key files written so far are removed again.

    Raises
    ------
    RequestError
        If the dynamic configuration file already exists or the account
        name is invalid.

    """
    validate_account_name(account)
    config_dir = Path(settings.paths.config_dir)
    path = settings.paths.dynamic_path
    if path.exists():
        raise RequestError(ALREADY_EXISTS, f"dynamic configuration {path} already exists")

    keys = KeyMaterialManager(config_dir)
    rollback = KeyFileRollback()
    success = False
    try:

        def write_key_file(rel: str, data: bytes) -> Path:
            full = keys.write_key_file(rel, data)
            rollback.add(full)
            return full

        domain_config = make_domain_config(
            keys,
            write_key_file,
            address.domain,
            parse_domain(settings.hostname),
            account,
            mta_sts=settings.mta_sts,
            dkim=settings.dkim,
        )
        snapshot = ConfigSnapshot(
            domains={address.domain.name: domain_config},
            accounts={account: make_account_config(address)},
        )
        errors = check_snapshot(snapshot)
        if errors:
            raise RequestError(INVALID_CONFIG, "; ".join(errors))
        store = ConfigStore.create(path, snapshot, config_dir=config_dir)
        success = True
    finally:
        rollback.release(success=success)

    log.info("Created %s with domain %s and account %s", path, address.domain.name, account)
    audit_events.config_created(str(path), address.domain.name, account)
    return store
