"""DKIM key material."""

from mailcfg.keys.material import KeyFileRollback, KeyMaterialManager

__all__ = ["KeyFileRollback", "KeyMaterialManager"]
