"""Allow running ksck as ``python -m ksck``."""

from ksck.cli import main

main()
