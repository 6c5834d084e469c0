"""Domain subcommands."""

from __future__ import annotations

import logging
from dataclasses import replace

from mailcfg.cli.commands import open_admin, output, unknown_command
from mailcfg.core.address import parse_domain

log = logging.getLogger(__name__)


def run_domain(config, args) -> None:
    """Handle domain subcommands."""
    cmd = args.domain_command
    if cmd == "add":
        _domain_add(config, args)
    elif cmd == "remove":
        open_admin(config, args).domains.remove(parse_domain(args.domain))
        output(f"domain {args.domain} removed")
    elif cmd in ("enable", "disable"):
        disabled = cmd == "disable"
        domain = parse_domain(args.domain)
        open_admin(config, args).domains.save(
            domain.name,
            lambda d: replace(d, disabled=disabled),
        )
        output(f"domain {domain.name} {cmd}d")
    elif cmd == "list":
        snapshot = open_admin(config, args).snapshot()
        for name in sorted(snapshot.domains):
            state = " (disabled)" if snapshot.domains[name].disabled else ""
            output(f"{name}{state}")
    else:
        unknown_command("domain")


def _domain_add(config, args) -> None:
    admin = open_admin(config, args)
    domain = parse_domain(args.domain)
    snapshot = admin.domains.add(domain, args.account, args.localpart, disabled=args.disabled)
    selectors = snapshot.domains[domain.name].dkim.selectors
    output(f"domain {domain.name} added, reports to account {args.account}")
    for name, sel in sorted(selectors.items()):
        output(f"  dkim selector {name}: {sel.private_key_file}")
