"""Entry point for ``python -m thimble``."""

from .cli import main

if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
