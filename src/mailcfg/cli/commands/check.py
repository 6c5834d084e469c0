"""Validate the dynamic configuration document."""

from __future__ import annotations

import sys
from pathlib import Path

from mailcfg.cli.commands import output
from mailcfg.core.errors import ConfigDocumentError
from mailcfg.store.config_store import ConfigStore


def run_check(config, args) -> None:  # noqa: ARG001
    """Parse the document and report every problem; exit 1 if any."""
    paths = config.settings.paths
    try:
        store = ConfigStore.load(paths.dynamic_path, config_dir=Path(paths.config_dir))
    except ConfigDocumentError as exc:
        for err in exc.errors:
            sys.stderr.write(f"{paths.dynamic_path}: {err}\n")
        sys.exit(1)
    snapshot = store.snapshot()
    output(
        f"{paths.dynamic_path}: ok, {len(snapshot.domains)} domains, "
        f"{len(snapshot.accounts)} accounts",
    )
