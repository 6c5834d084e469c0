"""CLI subcommand implementations.

Each module exposes ``run_<command>(config, args)``.  Request and
internal errors propagate to :func:`mailcfg.cli.main.main`, which maps
them to the exit status.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import argparse

    from mailcfg.config import MailcfgConfig
    from mailcfg.services.admin import ConfigAdminService


def open_admin(config: MailcfgConfig, args: argparse.Namespace) -> ConfigAdminService:
    """Open the dynamic configuration named by *config*.

    The command-line tool runs while the mail server is stopped, so the
    outgoing queue is empty.  Transactions are counted in ``args.metrics``
    when :func:`mailcfg.cli.main.main` set one up.
    """
    from mailcfg.backends import FileAccountStore, MemoryQueue  # noqa: PLC0415
    from mailcfg.services.admin import ConfigAdminService  # noqa: PLC0415

    settings = config.settings
    return ConfigAdminService.open(
        settings,
        MemoryQueue(),
        FileAccountStore(Path(settings.paths.data_dir)),
        getattr(args, "metrics", None),
    )


def output(line: str) -> None:
    sys.stdout.write(line + "\n")


def unknown_command(name: str) -> None:
    sys.stderr.write(f"mailcfg: error: missing or unknown {name} command\n")
    sys.exit(1)
