"""
Printer Pool Models
"""

from .printer import (
    PrinterType, PrinterStatus, EthernetParams, UsbParams, BluetoothParams,
    TransportParams, PrinterConfig, PrinterEntry,
)
from .job import PrintJob, Completed, Failed, JobResult, PrintEvent

__all__ = [
    'PrinterType', 'PrinterStatus', 'EthernetParams', 'UsbParams', 'BluetoothParams',
    'TransportParams', 'PrinterConfig', 'PrinterEntry',
    'PrintJob', 'Completed', 'Failed', 'JobResult', 'PrintEvent',
]
