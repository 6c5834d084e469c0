"""Alias subcommands."""

from __future__ import annotations

from mailcfg.cli.commands import open_admin, output, unknown_command
from mailcfg.core.address import parse_address
from mailcfg.models.domain import Alias


def _members(values: list[str]) -> tuple[str, ...]:
    return tuple(str(parse_address(v)) for v in values)


def run_alias(config, args) -> None:
    """Handle alias subcommands."""
    cmd = args.alias_command
    if cmd is None:
        unknown_command("alias")
        return
    address = parse_address(args.alias)
    admin = open_admin(config, args)
    if cmd == "add":
        alias = Alias(
            addresses=_members(args.members),
            post_public=args.post_public,
            list_members=args.list_members,
            allow_msg_from=args.allow_msg_from,
        )
        admin.aliases.add(address, alias)
        output(f"alias {address} added")
    elif cmd == "update":
        admin.aliases.update(
            address,
            post_public=args.post_public,
            list_members=args.list_members,
            allow_msg_from=args.allow_msg_from,
        )
        output(f"alias {address} updated")
    elif cmd == "remove":
        admin.aliases.remove(address)
        output(f"alias {address} removed")
    elif cmd == "add-members":
        admin.aliases.add_addresses(address, _members(args.members))
        output(f"members added to alias {address}")
    elif cmd == "remove-members":
        admin.aliases.remove_addresses(address, _members(args.members))
        output(f"members removed from alias {address}")
    else:
        unknown_command("alias")
