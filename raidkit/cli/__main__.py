#!/usr/bin/env python3
"""
Entry point for raidkit CLI tool.
"""

import sys

from raidkit.cli.cli import main

if __name__ == "__main__":
    sys.exit(main())
