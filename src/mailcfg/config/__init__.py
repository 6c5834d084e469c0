"""Static configuration subsystem for mailcfg.

Public API::

    from mailcfg.config import get_config, MailcfgConfig

    # At startup (CLI only):
    MailcfgConfig(config_file="mailcfg.yaml")

    # Everywhere else:
    cfg = get_config()
    hostname = cfg.settings.hostname      # typed access
    audit = cfg.get("logging.audit.file") # dynamic dot-path
"""

from mailcfg.config.loader import (
    ConfigValidationError,
    MailcfgConfig,
    get_config,
)
from mailcfg.config.settings import (
    AuditLogSettings,
    DKIMSettings,
    LoggingSettings,
    MailcfgSettings,
    MTASTSSettings,
    PathSettings,
    PostmasterSettings,
    build_settings,
)

__all__ = [
    "AuditLogSettings",
    "ConfigValidationError",
    "DKIMSettings",
    "LoggingSettings",
    "MTASTSSettings",
    "MailcfgConfig",
    "MailcfgSettings",
    "PathSettings",
    "PostmasterSettings",
    "build_settings",
    "get_config",
]
