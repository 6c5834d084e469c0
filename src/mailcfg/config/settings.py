"""Typed, frozen dataclasses for every static configuration section.

This module is the **single source of truth** for default values; the
builders below are what the application actually reads.

Access pattern::

    from mailcfg.config import get_config

    paths = get_config().settings.paths
    print(paths.config_dir, paths.dynamic_file)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PathSettings:
    """Where the dynamic configuration, key files and account data live.

    ``dynamic_file`` and key file paths in it are relative to
    ``config_dir``.
    """

    config_dir: str
    data_dir: str
    dynamic_file: str

    @property
    def dynamic_path(self) -> Path:
        return Path(self.config_dir) / self.dynamic_file


def _build_paths(data: dict | None) -> PathSettings:
    d = data or {}
    return PathSettings(
        config_dir=d.get("config_dir", "config"),
        data_dir=d.get("data_dir", "data"),
        dynamic_file=d.get("dynamic_file", "domains.yaml"),
    )


# ---------------------------------------------------------------------------
# Postmaster
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PostmasterSettings:
    """Account receiving mail for the postmaster of every domain."""

    account: str
    mailbox: str


def _build_postmaster(data: dict | None) -> PostmasterSettings:
    d = data or {}
    return PostmasterSettings(
        account=d.get("account", ""),
        mailbox=d.get("mailbox", "Postmaster"),
    )


# ---------------------------------------------------------------------------
# MTA-STS
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MTASTSSettings:
    """Whether new domains get an MTA-STS policy, and its initial max age."""

    enabled: bool
    max_age_seconds: int


def _build_mta_sts(data: dict | None) -> MTASTSSettings:
    d = data or {}
    return MTASTSSettings(
        enabled=d.get("enabled", False),
        max_age_seconds=d.get("max_age_seconds", 86400),
    )


# ---------------------------------------------------------------------------
# DKIM
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DKIMSettings:
    """Defaults for selectors created for new domains."""

    expiration: str
    headers: tuple[str, ...]


def _build_dkim(data: dict | None) -> DKIMSettings:
    d = data or {}
    return DKIMSettings(
        expiration=d.get("expiration", "72h"),
        headers=tuple(d.get("headers", [])),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditLogSettings:
    """Audit log output settings (file, rotation)."""

    enabled: bool
    file: str | None
    max_file_size_bytes: int
    backup_count: int


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format, audit)."""

    level: str
    format: str
    audit: AuditLogSettings


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    a = d.get("audit") or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
        audit=AuditLogSettings(
            enabled=a.get("enabled", True),
            file=a.get("file"),
            max_file_size_bytes=a.get("max_file_size_bytes", 10485760),
            backup_count=a.get("backup_count", 5),
        ),
    )


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MailcfgSettings:
    paths: PathSettings
    hostname: str
    postmaster: PostmasterSettings
    mta_sts: MTASTSSettings
    dkim: DKIMSettings
    logging: LoggingSettings


def build_settings(data: dict) -> MailcfgSettings:
    """Build the full typed settings tree from raw config data.

    Called once during :class:`MailcfgConfig` initialization after
    environment-variable resolution.
    """
    return MailcfgSettings(
        paths=_build_paths(data.get("paths")),
        hostname=data.get("hostname", "localhost"),
        postmaster=_build_postmaster(data.get("postmaster")),
        mta_sts=_build_mta_sts(data.get("mta_sts")),
        dkim=_build_dkim(data.get("dkim")),
        logging=_build_logging(data.get("logging")),
    )
