"""mailcfg CLI package."""
