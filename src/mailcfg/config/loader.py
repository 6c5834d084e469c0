"""mailcfg static configuration loader.

Lifecycle::

    # 1. CLI creates the singleton (once, at startup)
    MailcfgConfig(config_file="/etc/mailcfg/mailcfg.yaml")

    # 2. Any module retrieves it afterwards
    from mailcfg.config import get_config
    cfg = get_config()
    cfg.settings.paths.config_dir  # typed access

    # 3. Dynamic access
    cfg.get("logging.audit.file")

The raw data is checked against the bundled ``schema.json`` before the
cross-field checks in :meth:`MailcfgConfig.additional_checks` run.
"""

from __future__ import annotations

import functools
import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator, ValidationError

from mailcfg.config.settings import MailcfgSettings, build_settings
from mailcfg.core.address import parse_domain
from mailcfg.core.durations import parse_duration
from mailcfg.core.errors import RequestError

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singleton reference
# ---------------------------------------------------------------------------
_instance: MailcfgConfig | None = None


def get_config() -> MailcfgConfig:
    """Return the initialised configuration singleton.

    Raises :class:`RuntimeError` if :class:`MailcfgConfig` has not been
    created yet (i.e. the CLI entry point has not run).
    """
    if _instance is None:
        msg = (
            "Configuration not initialised. "
            "MailcfgConfig must be created with config_file= before calling get_config()."
        )
        raise RuntimeError(msg)
    return _instance


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(Exception):
    """Raised when validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def _resolve_env_vars(
    data: Any,  # noqa: ANN401
    path: str = "",
) -> None:
    """Walk *data* in-place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, child_path)


def _read_file(path: Path) -> dict:
    """Parse *path* as YAML or JSON (by extension)."""
    try:
        with path.open(encoding="utf-8") as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except OSError as exc:
        raise ConfigValidationError([f"Cannot read {path}: {exc}"]) from exc
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigValidationError([f"Cannot parse {path}: {exc}"]) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigValidationError([f"{path}: top level must be a mapping"])
    return data


# ---------------------------------------------------------------------------
# Schema validation
# ---------------------------------------------------------------------------


@functools.cache
def _schema_validator() -> Draft202012Validator:
    schema = json.loads(_SCHEMA_PATH.read_text(encoding="utf-8"))
    return Draft202012Validator(schema)


def _validate_schema(data: dict) -> None:
    """Check *data* against the bundled JSON schema, reporting every violation."""
    violations = sorted(
        _schema_validator().iter_errors(data),
        key=lambda err: [str(part) for part in err.absolute_path],
    )
    if violations:
        raise ConfigValidationError([f"{_location(err)}: {err.message}" for err in violations])


def _location(err: ValidationError) -> str:
    """Dotted path of the offending value, e.g. ``logging.audit.backup_count``."""
    return ".".join(str(part) for part in err.absolute_path) or "(top level)"


def _absolutize_paths(data: dict, base: Path) -> None:
    """Make ``paths.config_dir``/``paths.data_dir`` absolute relative to *base*."""
    paths = data.get("paths")
    if paths is None:
        paths = data["paths"] = {}
    if not isinstance(paths, dict):
        return
    for key, default in (("config_dir", "config"), ("data_dir", "data")):
        value = paths.get(key, default)
        if isinstance(value, str) and not Path(value).is_absolute():
            paths[key] = str(base / value)


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class MailcfgConfig:
    """Static configuration of the mailcfg tool.

    After construction the typed settings tree is available at
    :pyattr:`settings` and the raw dict via :pyattr:`data` /
    :pymeth:`get`.

    Parameters
    ----------
    config_file:
        Path to the YAML/JSON configuration file.  Relative directories
        in ``paths`` are taken relative to the file's directory.

    """

    def __init__(self, *, config_file: str | Path) -> None:
        global _instance  # noqa: PLW0603

        self._source = Path(config_file)
        self._data = self._load(self._source)
        self.additional_checks()
        self._settings: MailcfgSettings = build_settings(self._data)
        _instance = self

    # -- lifecycle ----------------------------------------------------------

    @staticmethod
    def _load(source: Path) -> dict:
        """Load config file, resolve ``${VAR}`` references, check the schema.

        Env-var resolution runs first so that substituted values are checked
        against the enum constraints in the schema.
        """
        data = _read_file(source)
        _resolve_env_vars(data)
        _absolutize_paths(data, source.resolve().parent)
        _validate_schema(data)
        return data

    # -- access -------------------------------------------------------------

    @property
    def data(self) -> dict:
        return self._data

    @property
    def settings(self) -> MailcfgSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    def get(self, dotted: str, default: Any = None) -> Any:  # noqa: ANN401
        """Return the raw value at *dotted* path, or *default*."""
        node: Any = self._data
        for part in dotted.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    # -- validation ---------------------------------------------------------

    def additional_checks(self) -> None:
        """Semantic & cross-field validation.

        Runs after the schema check passed, so every section is a mapping
        (or empty) and every value has its declared type.
        """
        errors: list[str] = []
        warnings: list[str] = []

        hostname = self._data.get("hostname", "localhost")
        try:
            parse_domain(hostname)
        except RequestError as exc:
            errors.append(f"hostname ({hostname!r}) is invalid: {exc.detail}")

        paths = self._data["paths"]
        dynamic_file = paths.get("dynamic_file", "domains.yaml")
        if Path(dynamic_file).is_absolute():
            errors.append("paths.dynamic_file must be relative to paths.config_dir")

        postmaster = self._data.get("postmaster") or {}
        if not postmaster.get("account"):
            warnings.append(
                "postmaster.account is not set; new domains will add a postmaster "
                "address to the domain's account",
            )

        dkim = self._data.get("dkim") or {}
        expiration = dkim.get("expiration", "72h")
        try:
            parse_duration(expiration)
        except ValueError as exc:
            errors.append(f"dkim.expiration: {exc}")
        headers = dkim.get("headers", [])
        if headers and "from" not in {h.lower() for h in headers}:
            errors.append("dkim.headers must include From when set")

        for w in warnings:
            log.warning("Config warning: %s", w)

        if errors:
            raise ConfigValidationError(errors)

    # -- helpers ------------------------------------------------------------

    def reload_settings(self) -> MailcfgSettings:
        """Re-read the config file and rebuild settings.

        Does not reset the singleton.
        """
        return build_settings(self._load(self._source))

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton -- testing only."""
        global _instance  # noqa: PLW0603
        _instance = None

    def __repr__(self) -> str:
        return f"<MailcfgConfig config_file={self._source}>"
