"""Allow ``python -m cred``."""

from .cli import main

main()
