"""Allow running as `python -m adhar_cli`."""

from .main import main

main()
