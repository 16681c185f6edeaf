"""Allow ``python -m hostmesh``."""

from .cli import main

if __name__ == "__main__":
    main()
