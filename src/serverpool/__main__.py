"""Entry point for `python -m serverpool`."""

import sys

from serverpool.cli.__main__ import main

if __name__ == "__main__":
    sys.exit(main())
