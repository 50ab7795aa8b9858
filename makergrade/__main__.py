"""Allow ``python -m makergrade``."""

from makergrade.cli import main

main()
