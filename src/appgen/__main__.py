"""Entry point for ``python -m appgen``."""

from .cli import main

if __name__ == "__main__":
    main()
