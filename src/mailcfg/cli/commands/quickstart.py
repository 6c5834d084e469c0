"""Create the initial dynamic configuration."""

from __future__ import annotations

import logging

from mailcfg.cli.commands import output
from mailcfg.core.address import parse_address
from mailcfg.services.admin import create_initial_config

log = logging.getLogger(__name__)


def run_quickstart(config, args) -> None:
    """Write a dynamic configuration with the domain of ``args.address``.

    The account defaults to the localpart of the address.
    """
    address = parse_address(args.address)
    account = args.account or address.localpart
    store = create_initial_config(config.settings, address, account)

    domain = store.snapshot().domains[address.domain.name]
    output(f"created {store.path}")
    output(f"  domain {address.domain.name}, account {account} with address {address}")
    for name, sel in sorted(domain.dkim.selectors.items()):
        output(f"  dkim selector {name}: {sel.private_key_file}")
