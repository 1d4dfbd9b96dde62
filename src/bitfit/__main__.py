"""Allow running as `python -m bitfit`."""

import sys

from bitfit.cli import main

if __name__ == "__main__":
    sys.exit(main())
