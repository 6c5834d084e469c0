"""Domain service: add, remove and edit domains of the dynamic config.

A new domain gets two RSA DKIM selectors named after the current year
(``2026a``, ``2026b``), signs with the first, and sends DMARC and TLS
reports to the account it is added for::

    service.add(parse_domain("example.org"), "admin", localpart="postmaster")
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from mailcfg.core.address import Address, Domain, parse_localpart
from mailcfg.core.errors import (
    ALREADY_EXISTS,
    MALFORMED,
    NOT_FOUND,
    STEP_COLLABORATOR,
    InternalError,
    RequestError,
)
from mailcfg.core.types import DKIMAlgorithm, MTASTSMode
from mailcfg.logging import audit_events
from mailcfg.models.account import Destination
from mailcfg.models.domain import DKIM, MTASTS, DomainConfig, ReportingAddress, Selector
from mailcfg.models.snapshot import assoc
from mailcfg.services.account import make_account_config, validate_account_name
from mailcfg.validation.consistency import check_address_available, check_domain_removal

if TYPE_CHECKING:
    from collections.abc import Callable

    from mailcfg.backends.base import CredentialStore
    from mailcfg.config.settings import DKIMSettings, MTASTSSettings, PostmasterSettings
    from mailcfg.keys.material import KeyMaterialManager
    from mailcfg.models.snapshot import ConfigSnapshot
    from mailcfg.services.transaction import TransactionRunner

log = logging.getLogger(__name__)

DMARC_LOCALPART = "dmarcreports"
DMARC_MAILBOX = "DMARC"
TLSRPT_LOCALPART = "tlsreports"
TLSRPT_MAILBOX = "TLSRPT"
CATCHALL_SEPARATOR = "+"


def make_domain_config(  # noqa: PLR0913
    keys: KeyMaterialManager,
    write_key_file: Callable[[str, bytes], object],
    domain: Domain,
    hostname: Domain,
    account: str,
    *,
    mta_sts: MTASTSSettings | None = None,
    dkim: DKIMSettings | None = None,
    now: datetime | None = None,
) -> DomainConfig:
    """Build the configuration of a new domain, writing its DKIM keys.

    Key files are created through *write_key_file* so the caller can
    remove them again if the domain is not committed.

    Parameters
    ----------
    keys:
        Generates the key material and names the key files.
    write_key_file:
        Called with the relative path and PEM data of each new key.
    domain:
        The domain being added.
    hostname:
        Host name of the mail server, the MX of the MTA-STS policy.
    account:
        Account receiving DMARC and TLS reports.
    mta_sts:
        When enabled, the domain gets an enforcing MTA-STS policy.
    dkim:
        Expiration and header defaults for the new selectors.

    """
    now = now or datetime.now(UTC)
    year = now.strftime("%Y")

    selectors = {}
    for name in (year + "a", year + "b"):
        sel_name = Domain(ascii=name)
        pem = keys.generate_key(DKIMAlgorithm.RSA2048, sel_name, domain)
        path = keys.key_path(sel_name, domain, DKIMAlgorithm.RSA2048, now)
        write_key_file(path, pem)
        selectors[name] = Selector(
            private_key_file=path,
            algorithm=DKIMAlgorithm.RSA2048,
            headers=dkim.headers if dkim is not None else (),
            expiration=dkim.expiration if dkim is not None else "72h",
        )

    policy = None
    if mta_sts is not None and mta_sts.enabled:
        policy = MTASTS(
            policy_id=now.strftime("%Y%m%dT%H%M%S"),
            mode=MTASTSMode.ENFORCE,
            max_age_seconds=mta_sts.max_age_seconds,
            mx=(hostname.ascii,),
        )

    return DomainConfig(
        client_settings_domain="mail." + domain.name,
        localpart_catchall_separators=(CATCHALL_SEPARATOR,),
        # Sign with the first key only; switching to the second is a
        # config change if the first is ever misused.
        dkim=DKIM(selectors=selectors, sign=(year + "a",)),
        dmarc=ReportingAddress(account=account, localpart=DMARC_LOCALPART, mailbox=DMARC_MAILBOX),
        tlsrpt=ReportingAddress(
            account=account,
            localpart=TLSRPT_LOCALPART,
            mailbox=TLSRPT_MAILBOX,
        ),
        mta_sts=policy,
    )


class DomainService:
    """Manage domains.

    Parameters
    ----------
    runner:
        Transaction runner of the configuration store.
    credentials:
        Stored login credentials, checked before a domain is removed.
    hostname:
        Host name of the mail server.
    postmaster:
        Static postmaster settings; the postmaster account is not given
        a ``postmaster@`` address for new domains.
    mta_sts:
        MTA-STS defaults for new domains.
    dkim:
        Selector defaults for new domains.

    """

    def __init__(  # noqa: PLR0913
        self,
        runner: TransactionRunner,
        credentials: CredentialStore,
        hostname: Domain,
        postmaster: PostmasterSettings | None = None,
        mta_sts: MTASTSSettings | None = None,
        dkim: DKIMSettings | None = None,
    ) -> None:
        self._runner = runner
        self._credentials = credentials
        self._hostname = hostname
        self._postmaster = postmaster
        self._mta_sts = mta_sts
        self._dkim = dkim

    def add(
        self,
        domain: Domain,
        account: str,
        localpart: str | None = None,
        *,
        disabled: bool = False,
    ) -> ConfigSnapshot:
        """Add *domain*, reporting to *account*.

        If the account does not exist yet it is created with the address
        ``localpart@domain``; *localpart* must be given exactly when the
        account is new.  An existing account other than the postmaster
        account is given ``postmaster@domain``.
        """
        with self._runner.transaction(
            "domain_add",
            domain=domain.name,
            account=account,
            localpart=localpart,
        ) as txn:
            base = txn.base
            if domain.name in base.domains:
                raise RequestError(ALREADY_EXISTS, "domain already present")

            account_exists = account in base.accounts
            if account_exists and localpart:
                raise RequestError(
                    ALREADY_EXISTS,
                    "account already exists (leave localpart empty when using an existing account)",
                )
            if not account_exists and not localpart:
                raise RequestError(NOT_FOUND, "account does not yet exist (specify a localpart)")
            if not account:
                raise RequestError(MALFORMED, "account name is empty")
            if not account_exists:
                validate_account_name(account)
                parse_localpart(localpart)

            domain_config = make_domain_config(
                self._runner.keys,
                txn.write_key_file,
                domain,
                self._hostname,
                account,
                mta_sts=self._mta_sts,
                dkim=self._dkim,
            )
            if disabled:
                domain_config = replace(domain_config, disabled=True)
            candidate = base.with_domain(domain.name, domain_config)

            if not account_exists:
                address = Address(localpart=localpart, domain=domain)
                check_address_available(candidate, address)
                candidate = candidate.with_account(account, make_account_config(address))
            elif self._postmaster is None or account != self._postmaster.account:
                postmaster = str(Address(localpart="postmaster", domain=domain))
                acc = base.accounts[account]
                candidate = candidate.with_account(
                    account,
                    replace(acc, destinations=assoc(acc.destinations, postmaster, Destination())),
                )

            result = txn.commit(candidate)

        log.info("Domain added: %s (disabled=%s)", domain.name, disabled)
        audit_events.domain_added(domain.name, account, sorted(domain_config.dkim.selectors))
        return result

    def remove(self, domain: Domain) -> ConfigSnapshot:
        """Remove *domain*; accounts referencing it are left alone.

        DKIM key files no longer used by any domain are retired.
        """
        with self._runner.transaction("domain_remove", domain=domain.name) as txn:
            try:
                credentials = self._credentials.list_login_credentials()
            except Exception as exc:
                msg = f"listing login credentials: {exc}"
                raise InternalError(STEP_COLLABORATOR, msg) from exc
            domain_config = check_domain_removal(txn.base, domain, credentials)
            result = txn.commit(txn.base.without_domain(domain.name))
            txn.retire_unused(domain_config.dkim.selectors.values())

        log.info("Domain removed: %s", domain.name)
        audit_events.domain_removed(domain.name, txn.retired)
        return result

    def save(self, domain: str, modify: Callable[[DomainConfig], DomainConfig]) -> ConfigSnapshot:
        """Replace the configuration of *domain* with ``modify(current)``."""
        result = self._runner.edit_domain(domain, modify)
        log.info("Domain saved: %s", domain)
        audit_events.domain_saved(domain)
        return result
