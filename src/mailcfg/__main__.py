"""Allow ``python -m mailcfg``."""

from mailcfg.cli.main import main

main()
