"""Consistency checks gating configuration edits."""

from mailcfg.validation.consistency import check_snapshot

__all__ = ["check_snapshot"]
