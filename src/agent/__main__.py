"""
Entry point for: python3 -m src.agent

Runs the signage agent until SIGINT/SIGTERM.
"""

import sys

from .main import main

if __name__ == "__main__":
    sys.exit(main())
