#!/usr/bin/env python
"""
Printer Pool Service - Standalone Entry Point

Run directly:
    python main.py

Or with environment variables:
    PRINT_POOL_PORT=5200 python main.py
"""

import os
import sys

# Ensure package is importable when running directly
if __name__ == '__main__':
    parent_dir = os.path.dirname(os.path.abspath(__file__))
    if parent_dir not in sys.path:
        sys.path.insert(0, parent_dir)

from printer_pool.app import main


if __name__ == '__main__':
    main()
