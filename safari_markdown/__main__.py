#!/usr/bin/env python3
"""safari-markdown - entry point for `python -m safari_markdown`."""

from .cli import main


if __name__ == "__main__":
    main()
