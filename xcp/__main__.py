#!/usr/bin/env python3
"""Allow ``python -m xcp``."""

from __future__ import annotations

import sys

from xcp.cli.main import main

if __name__ == "__main__":
    sys.exit(main())
