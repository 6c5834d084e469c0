"""Address subcommands."""

from __future__ import annotations

from mailcfg.cli.commands import open_admin, output, unknown_command
from mailcfg.core.address import destination_key, parse_destination


def run_address(config, args) -> None:
    """Handle address subcommands; ``@domain`` names a catchall."""
    cmd = args.address_command
    if cmd == "add":
        destination = parse_destination(args.address)
        open_admin(config, args).addresses.add(destination, args.account)
        output(f"address {destination_key(destination)} added to account {args.account}")
    elif cmd == "remove":
        destination = parse_destination(args.address)
        open_admin(config, args).addresses.remove(destination)
        output(f"address {destination_key(destination)} removed")
    else:
        unknown_command("address")
