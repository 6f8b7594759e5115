"""
Printer Pool Service Configuration
"""

import os

# =============================================================================
# Server Configuration
# =============================================================================

PORT = int(os.environ.get('PRINT_POOL_PORT', 5100))
HOST = os.environ.get('PRINT_POOL_HOST', '0.0.0.0')
DEBUG = os.environ.get('PRINT_POOL_DEBUG', 'false').lower() == 'true'

# API Key for authentication
API_KEY = os.environ.get('PRINT_POOL_API_KEY', 'print-pool-2026')

# =============================================================================
# Logging
# =============================================================================

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
LOG_FILE = os.environ.get('LOG_FILE')

# =============================================================================
# Transport Defaults
# =============================================================================

OPEN_TIMEOUT = float(os.environ.get('PRINT_POOL_OPEN_TIMEOUT', 10))  # seconds
WRITE_TIMEOUT = float(os.environ.get('PRINT_POOL_WRITE_TIMEOUT', 30))  # seconds

# Raw TCP (JetDirect) port
ETHERNET_PORT = 9100

# RFCOMM channel used by Bluetooth thermal printers
BLUETOOTH_CHANNEL = 1

# =============================================================================
# Dispatch Defaults
# =============================================================================

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_PRINT_WIDTH = 576  # dots (80mm paper at 203 dpi)

# Background submission threads
JOB_WORKERS = int(os.environ.get('PRINT_POOL_JOB_WORKERS', 4))

# Finished jobs kept in memory for /api/jobs
JOB_HISTORY_SIZE = 200

# =============================================================================
# Supported Printer Types
# =============================================================================

PRINTER_TYPES = {
    'ethernet': {
        'name': 'Network Thermal Printer',
        'transport': 'raw TCP socket',
        'default_port': ETHERNET_PORT,
    },
    'usb': {
        'name': 'USB Thermal Printer',
        'transport': 'USB bulk endpoint (python-escpos)',
    },
    'bluetooth': {
        'name': 'Bluetooth Thermal Printer',
        'transport': 'RFCOMM socket',
        'default_channel': BLUETOOTH_CHANNEL,
    },
}

# =============================================================================
# Storage Configuration
# =============================================================================

# Where to store printer configuration (local file-based for standalone)
DATA_DIR = os.environ.get('PRINT_POOL_DATA_DIR', os.path.expanduser('~/.printer_pool'))
