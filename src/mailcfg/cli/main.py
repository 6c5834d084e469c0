"""mailcfg command-line entry point.

Usage::

    mailcfg -c /etc/mailcfg/mailcfg.yaml quickstart admin@example.org
    mailcfg -c mailcfg.yaml check
    mailcfg -c mailcfg.yaml domain add example.net admin
    mailcfg -c mailcfg.yaml account add bob bob@example.net
    mailcfg -c mailcfg.yaml address add @example.net bob
    mailcfg -c mailcfg.yaml alias add team@example.net bob@example.net
    mailcfg -c mailcfg.yaml dkim add example.net 2027a --algorithm ed25519
    python -m mailcfg -c mailcfg.yaml domain list

Exit status is 1 for a rejected request or invalid settings, 2 when an
operational error (I/O, persistence, collaborators) stopped the change.
With ``--metrics-file`` the transaction counters are written out in
Prometheus text format when the command ends, for a textfile collector.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mailcfg.metrics.collector import MetricsCollector

log = logging.getLogger(__name__)

EXIT_REQUEST_ERROR = 1
EXIT_INTERNAL_ERROR = 2


def _get_version() -> str:
    from mailcfg import __version__  # noqa: PLC0415

    return __version__


def _build_parser() -> argparse.ArgumentParser:  # noqa: PLR0915
    parser = argparse.ArgumentParser(
        prog="mailcfg",
        description="Transactional editing of a mail server's dynamic configuration",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        metavar="PATH",
        help="Path to the configuration file (YAML or JSON).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "--metrics-file",
        metavar="PATH",
        help="Write transaction metrics in Prometheus text format to PATH on exit.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # quickstart / check
    quick = subparsers.add_parser("quickstart", help="Create the initial dynamic configuration")
    quick.add_argument("address", help="First address, e.g. admin@example.org")
    quick.add_argument("account", nargs="?", help="Account name (default: the localpart)")
    subparsers.add_parser("check", help="Parse and validate the dynamic configuration")

    # domain
    domain_parser = subparsers.add_parser("domain", help="Domain management")
    domain_sub = domain_parser.add_subparsers(dest="domain_command")
    p = domain_sub.add_parser("add", help="Add a domain")
    p.add_argument("domain")
    p.add_argument("account", help="Account receiving reports (created if missing)")
    p.add_argument("localpart", nargs="?", help="Localpart for a new account")
    p.add_argument("--disabled", action="store_true", default=False)
    p = domain_sub.add_parser("remove", help="Remove a domain")
    p.add_argument("domain")
    for name in ("enable", "disable"):
        p = domain_sub.add_parser(name, help=f"{name.capitalize()} a domain")
        p.add_argument("domain")
    domain_sub.add_parser("list", help="List domains")

    # account
    account_parser = subparsers.add_parser("account", help="Account management")
    account_sub = account_parser.add_subparsers(dest="account_command")
    p = account_sub.add_parser("add", help="Add an account")
    p.add_argument("account")
    p.add_argument("address")
    p = account_sub.add_parser("remove", help="Remove an account")
    p.add_argument("account")
    account_sub.add_parser("list", help="List accounts")

    # address
    address_parser = subparsers.add_parser("address", help="Account address management")
    address_sub = address_parser.add_subparsers(dest="address_command")
    p = address_sub.add_parser("add", help="Add an address (or @domain catchall) to an account")
    p.add_argument("address")
    p.add_argument("account")
    p = address_sub.add_parser("remove", help="Remove an address")
    p.add_argument("address")

    # alias
    alias_parser = subparsers.add_parser("alias", help="Alias management")
    alias_sub = alias_parser.add_subparsers(dest="alias_command")
    for name, help_text in [("add", "Add an alias"), ("update", "Change alias flags")]:
        p = alias_sub.add_parser(name, help=help_text)
        p.add_argument("alias")
        if name == "add":
            p.add_argument("members", nargs="+")
        p.add_argument("--post-public", action="store_true", default=False)
        p.add_argument("--list-members", action="store_true", default=False)
        p.add_argument("--allow-msg-from", action="store_true", default=False)
    p = alias_sub.add_parser("remove", help="Remove an alias")
    p.add_argument("alias")
    for name in ("add-members", "remove-members"):
        p = alias_sub.add_parser(name, help=f"{name.replace('-', ' ').capitalize()}")
        p.add_argument("alias")
        p.add_argument("members", nargs="+")

    # dkim
    dkim_parser = subparsers.add_parser("dkim", help="DKIM selector management")
    dkim_sub = dkim_parser.add_subparsers(dest="dkim_command")
    p = dkim_sub.add_parser("add", help="Generate a key and add a selector")
    p.add_argument("domain")
    p.add_argument("selector")
    p.add_argument("--algorithm", default="rsa", choices=["rsa", "rsa2048", "ed25519"])
    p.add_argument("--hash", default="sha256", dest="hash_name")
    p.add_argument("--header-simple", action="store_true", default=False)
    p.add_argument("--body-simple", action="store_true", default=False)
    p.add_argument("--seal", action="store_true", default=False)
    p.add_argument("--header", action="append", default=[], dest="headers")
    p.add_argument("--lifetime", default="72h", help="Signature lifetime, e.g. 72h")
    p = dkim_sub.add_parser("remove", help="Remove a selector and retire its key")
    p.add_argument("domain")
    p.add_argument("selector")
    p = dkim_sub.add_parser("sign", help="Set the selectors used for signing")
    p.add_argument("domain")
    p.add_argument("selectors", nargs="+")

    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    sys.stderr.write(f"mailcfg: error: {message}\n")


def _write_metrics(path: Path, metrics: MetricsCollector) -> None:
    """Replace *path* with the Prometheus export of *metrics*."""
    from mailcfg.store.document import write_atomic  # noqa: PLC0415

    try:
        write_atomic(path, metrics.export())
    except OSError as exc:
        log.warning("Cannot write metrics to %s: %s", path, exc)


def main(argv: list[str] | None = None) -> None:  # noqa: C901, PLR0912
    """CLI entry point.  Parses arguments, loads config, runs the command."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- resolve config path ---
    config_path = Path(args.config)
    if not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(EXIT_REQUEST_ERROR)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    try:
        from mailcfg.config import ConfigValidationError, MailcfgConfig  # noqa: PLC0415

        config = MailcfgConfig(config_file=config_path)
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(EXIT_REQUEST_ERROR)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(f"failed to load configuration: {exc}")
        sys.exit(EXIT_REQUEST_ERROR)

    # -- replace bootstrap logging with structured logging ---
    from mailcfg.logging import configure_logging  # noqa: PLC0415

    configure_logging(config.settings.logging)

    # -- dispatch subcommand ---
    from mailcfg.core.errors import ConfigProblem, RequestError  # noqa: PLC0415
    from mailcfg.metrics.collector import MetricsCollector  # noqa: PLC0415

    args.metrics = MetricsCollector()
    command = args.command
    try:
        if command == "quickstart":
            from mailcfg.cli.commands.quickstart import run_quickstart  # noqa: PLC0415

            run_quickstart(config, args)
        elif command == "check":
            from mailcfg.cli.commands.check import run_check  # noqa: PLC0415

            run_check(config, args)
        elif command == "domain":
            from mailcfg.cli.commands.domain import run_domain  # noqa: PLC0415

            run_domain(config, args)
        elif command == "account":
            from mailcfg.cli.commands.account import run_account  # noqa: PLC0415

            run_account(config, args)
        elif command == "address":
            from mailcfg.cli.commands.address import run_address  # noqa: PLC0415

            run_address(config, args)
        elif command == "alias":
            from mailcfg.cli.commands.alias import run_alias  # noqa: PLC0415

            run_alias(config, args)
        elif command == "dkim":
            from mailcfg.cli.commands.dkim import run_dkim  # noqa: PLC0415

            run_dkim(config, args)
        else:
            parser.print_help(sys.stderr)
            sys.exit(EXIT_REQUEST_ERROR)
    except RequestError as exc:
        _print_error(exc.detail)
        sys.exit(EXIT_REQUEST_ERROR)
    except ConfigProblem as exc:
        if args.debug:
            raise
        _print_error(exc.detail)
        sys.exit(EXIT_INTERNAL_ERROR)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(f"unexpected failure: {exc}")
        sys.exit(EXIT_INTERNAL_ERROR)
    finally:
        if args.metrics_file:
            _write_metrics(Path(args.metrics_file), args.metrics)
