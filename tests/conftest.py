"""Root conftest for the mailcfg test suite."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from cryptography.hazmat.primitives.asymmetric import rsa  # noqa: E402

from mailcfg.backends.memory import MemoryCredentialStore, MemoryQueue  # noqa: E402
from mailcfg.config.settings import build_settings  # noqa: E402
from mailcfg.core.address import parse_address  # noqa: E402
from mailcfg.metrics.collector import MetricsCollector  # noqa: E402
from mailcfg.services.admin import ConfigAdminService, create_initial_config  # noqa: E402

# ---------------------------------------------------------------------------
# RSA key generation is slow; hand out one real key per parameter set
# ---------------------------------------------------------------------------
_generate_rsa = rsa.generate_private_key
_rsa_keys: dict = {}


def _cached_rsa_key(*, public_exponent, key_size, **kwargs):
    params = (public_exponent, key_size)
    if params not in _rsa_keys:
        _rsa_keys[params] = _generate_rsa(
            public_exponent=public_exponent,
            key_size=key_size,
            **kwargs,
        )
    return _rsa_keys[params]


@pytest.fixture(autouse=True)
def reuse_rsa_key(monkeypatch):
    monkeypatch.setattr(
        "mailcfg.keys.material.rsa.generate_private_key",
        _cached_rsa_key,
    )


# ---------------------------------------------------------------------------
# Singleton and logger cleanup -- autouse so every test gets a fresh slate
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the MailcfgConfig singleton before and after every test."""
    from mailcfg.config.loader import MailcfgConfig

    MailcfgConfig.reset()
    yield
    MailcfgConfig.reset()


@pytest.fixture(autouse=True)
def restore_loggers():
    """Undo ``configure_logging`` so caplog keeps seeing mailcfg records."""
    root = logging.getLogger()
    root_level = root.level
    yield
    # Drop the handler basicConfig() adds in main(); pytest's handlers are
    # StreamHandler subclasses.
    for handler in list(root.handlers):
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
    root.setLevel(root_level)
    for name in ("mailcfg", "mailcfg.audit"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(logging.NOTSET)
        logger.propagate = True


# ---------------------------------------------------------------------------
# Static settings
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings_data(tmp_path: Path) -> dict:
    """Settings with config and data directories below *tmp_path*."""
    return {
        "paths": {
            "config_dir": str(tmp_path / "config"),
            "data_dir": str(tmp_path / "data"),
        },
        "hostname": "mail.example.org",
        "postmaster": {"account": "admin"},
    }


@pytest.fixture()
def settings(settings_data: dict):
    return build_settings(settings_data)


@pytest.fixture()
def tmp_config_file(tmp_path: Path, settings_data: dict) -> Path:
    """Write *settings_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "mailcfg.yaml"
    cfg.write_text(
        yaml.safe_dump(settings_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


# ---------------------------------------------------------------------------
# Dynamic configuration and services
# ---------------------------------------------------------------------------


@pytest.fixture()
def config_dir(settings) -> Path:
    return Path(settings.paths.config_dir)


@pytest.fixture()
def store(settings):
    """A dynamic configuration with domain example.org and account admin."""
    return create_initial_config(settings, parse_address("admin@example.org"), "admin")


@pytest.fixture()
def queue() -> MemoryQueue:
    return MemoryQueue()


@pytest.fixture()
def credentials() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture()
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture()
def admin(settings, store, queue, credentials, metrics) -> ConfigAdminService:
    return ConfigAdminService(settings, store, queue, credentials, metrics)
