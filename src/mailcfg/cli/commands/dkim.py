"""DKIM subcommands."""

from __future__ import annotations

from dataclasses import replace

from mailcfg.cli.commands import open_admin, output, unknown_command
from mailcfg.core.address import parse_domain, parse_selector
from mailcfg.core.durations import parse_duration
from mailcfg.core.errors import MALFORMED, NOT_FOUND, RequestError


def run_dkim(config, args) -> None:
    """Handle dkim subcommands."""
    cmd = args.dkim_command
    if cmd == "add":
        _dkim_add(config, args)
    elif cmd == "remove":
        domain = parse_domain(args.domain)
        selector = parse_selector(args.selector)
        open_admin(config, args).dkim.remove(domain, selector)
        output(f"selector {selector.name} removed from domain {domain.name}")
    elif cmd == "sign":
        _dkim_sign(config, args)
    else:
        unknown_command("dkim")


def _dkim_add(config, args) -> None:
    domain = parse_domain(args.domain)
    selector = parse_selector(args.selector)
    try:
        lifetime = parse_duration(args.lifetime)
    except ValueError as exc:
        raise RequestError(MALFORMED, str(exc)) from None
    snapshot = open_admin(config, args).dkim.add(
        domain,
        selector,
        args.algorithm,
        args.hash_name,
        header_relaxed=not args.header_simple,
        body_relaxed=not args.body_simple,
        seal=args.seal,
        headers=args.headers,
        lifetime=lifetime,
    )
    sel = snapshot.domains[domain.name].dkim.selectors[selector.name]
    output(f"selector {selector.name} added to domain {domain.name}: {sel.private_key_file}")
    output("publish the DNS record before adding the selector to the signing list")


def _dkim_sign(config, args) -> None:
    selectors = tuple(parse_selector(s).name for s in args.selectors)
    domain = parse_domain(args.domain)

    def modify(d):
        for name in selectors:
            if name not in d.dkim.selectors:
                raise RequestError(NOT_FOUND, f"selector {name} does not exist for domain")
        return replace(d, dkim=replace(d.dkim, sign=selectors))

    open_admin(config, args).domains.save(domain.name, modify)
    output(f"domain {domain.name} signs with {', '.join(selectors)}")
