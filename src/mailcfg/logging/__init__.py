"""Logging subsystem for mailcfg.

Public API::

    from mailcfg.logging import configure_logging

    configure_logging(settings.logging)
"""

from mailcfg.logging.setup import configure_logging, operation_context

__all__ = ["configure_logging", "operation_context"]
