"""mailcfg: transactional editing of a mail server's dynamic configuration."""

__version__ = "1.0.0"
