"""Allow ``python -m projtools``."""

from projtools.cli import main

main()
