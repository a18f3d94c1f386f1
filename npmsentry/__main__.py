"""Allow ``python -m npmsentry``."""

from .cli import main

if __name__ == "__main__":
    main()
