"""DKIM service: add and remove signing selectors of a domain."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from mailcfg.core.durations import format_duration
from mailcfg.core.errors import MALFORMED, UNSUPPORTED, RequestError
from mailcfg.core.types import DKIMAlgorithm
from mailcfg.logging import audit_events
from mailcfg.models.domain import DKIM, Canonicalization, Selector
from mailcfg.models.snapshot import assoc, dissoc
from mailcfg.validation.consistency import check_dkim_selector_addition, check_dkim_selector_removal

if TYPE_CHECKING:
    from collections.abc import Sequence

    from mailcfg.core.address import Domain
    from mailcfg.models.snapshot import ConfigSnapshot
    from mailcfg.services.transaction import TransactionRunner

log = logging.getLogger(__name__)

DEFAULT_LIFETIME = timedelta(hours=72)


class DKIMService:
    """Manage DKIM selectors."""

    def __init__(self, runner: TransactionRunner) -> None:
        self._runner = runner

    def add(  # noqa: PLR0913
        self,
        domain: Domain,
        selector: Domain,
        algorithm: str = "rsa",
        hash_name: str = "sha256",
        *,
        header_relaxed: bool = True,
        body_relaxed: bool = True,
        seal: bool = False,
        headers: Sequence[str] = (),
        lifetime: timedelta = DEFAULT_LIFETIME,
    ) -> ConfigSnapshot:
        """Generate a key for *selector* and add the selector to *domain*.

        The selector is not added to the domain's signing list; that is
        a separate change once the DNS record is published.

        Parameters
        ----------
        algorithm:
            ``rsa`` (2048 bits) or ``ed25519``.
        hash_name:
            ``sha256`` or ``sha1``.
        seal:
            Whether to protect the signed headers against additions.
        lifetime:
            Signature expiration; must be positive.

        """
        try:
            alg = DKIMAlgorithm.from_name(algorithm)
        except ValueError:
            raise RequestError(UNSUPPORTED, f"unknown algorithm {algorithm!r}") from None
        try:
            expiration = format_duration(lifetime)
        except ValueError as exc:
            raise RequestError(MALFORMED, str(exc)) from None

        # Validate up front so a bad request costs no key generation.
        check_dkim_selector_addition(self._runner.store.snapshot(), domain, selector, hash_name)
        pem = self._runner.keys.generate_key(alg, selector, domain)

        with self._runner.transaction(
            "dkim_add",
            domain=domain.name,
            selector=selector.name,
        ) as txn:
            domain_config, hash_alg = check_dkim_selector_addition(
                txn.base,
                domain,
                selector,
                hash_name,
            )
            path = self._runner.keys.key_path(selector, domain, alg, datetime.now(UTC))
            txn.write_key_file(path, pem)

            new_selector = Selector(
                private_key_file=path,
                algorithm=alg,
                hash=hash_alg,
                canonicalization=Canonicalization(
                    header_relaxed=header_relaxed,
                    body_relaxed=body_relaxed,
                ),
                headers=tuple(headers),
                dont_seal_headers=not seal,
                expiration=expiration,
            )
            dkim = replace(
                domain_config.dkim,
                selectors=assoc(domain_config.dkim.selectors, selector.name, new_selector),
            )
            updated = replace(domain_config, dkim=dkim)
            result = txn.commit(txn.base.with_domain(domain.name, updated))

        log.info("DKIM key added: %s._domainkey.%s", selector.name, domain.name)
        audit_events.dkim_selector_added(domain.name, selector.name, alg.value, path)
        return result

    def remove(self, domain: Domain, selector: Domain) -> ConfigSnapshot:
        """Remove *selector* from *domain* and its signing list.

        The key file is retired unless another domain still uses it.
        """
        with self._runner.transaction(
            "dkim_remove",
            domain=domain.name,
            selector=selector.name,
        ) as txn:
            domain_config, sel = check_dkim_selector_removal(txn.base, domain, selector)
            dkim = DKIM(
                selectors=dissoc(domain_config.dkim.selectors, selector.name),
                sign=tuple(s for s in domain_config.dkim.sign if s != selector.name),
            )
            updated = replace(domain_config, dkim=dkim)
            result = txn.commit(txn.base.with_domain(domain.name, updated))
            txn.retire_unused([sel])

        log.info("DKIM key removed: %s._domainkey.%s", selector.name, domain.name)
        audit_events.dkim_selector_removed(domain.name, selector.name, txn.retired)
        return result
