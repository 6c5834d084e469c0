"""Account subcommands."""

from __future__ import annotations

from mailcfg.cli.commands import open_admin, output, unknown_command
from mailcfg.core.address import parse_address


def run_account(config, args) -> None:
    """Handle account subcommands."""
    cmd = args.account_command
    if cmd == "add":
        address = parse_address(args.address)
        open_admin(config, args).accounts.add(args.account, address)
        output(f"account {args.account} added with address {address}")
    elif cmd == "remove":
        open_admin(config, args).accounts.remove(args.account)
        output(f"account {args.account} removed, data marked for removal")
    elif cmd == "list":
        snapshot = open_admin(config, args).snapshot()
        for name in sorted(snapshot.accounts):
            addresses = ", ".join(sorted(snapshot.accounts[name].destinations))
            output(f"{name}: {addresses}")
    else:
        unknown_command("account")
