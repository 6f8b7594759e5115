"""
Printer Pool Service
====================

Printer pool and print job dispatcher for receipt and invoice printers.

Supports:
- Network thermal printers (raw TCP, port 9100)
- USB thermal printers (python-escpos)
- Bluetooth thermal printers (RFCOMM)

Usage:
    python -m printer_pool

API Endpoints:
    GET  /api/printers               - List all printers
    POST /api/printers               - Add new printer
    GET  /api/printers/{id}          - Get printer details
    PUT  /api/printers/{id}          - Update printer
    DEL  /api/printers/{id}          - Remove printer
    POST /api/printers/{id}/enabled  - Enable/disable printer
    POST /api/printers/{id}/test     - Test printer connection
    POST /api/print                  - Submit print job
    POST /api/print-all              - Print on every enabled printer
    POST /api/cash-drawer            - Open cash drawer
    GET  /api/status                 - Pool status summary
    GET  /api/jobs                   - Job history
"""

__version__ = '1.0.0'
__author__ = 'EGS Software AG'
