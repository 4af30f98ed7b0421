"""Main entry point for the relay monitor."""

import sys

from relay_monitor.cli import main


if __name__ == "__main__":
    sys.exit(main())
