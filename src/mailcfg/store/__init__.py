"""Persisted configuration document and the published snapshot."""

from mailcfg.store.config_store import ConfigStore
from mailcfg.store.document import load, parse, persist

__all__ = ["ConfigStore", "load", "parse", "persist"]
