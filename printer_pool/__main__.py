"""Entry point for ``python -m printer_pool``."""

from .app import main

if __name__ == '__main__':
    main()
