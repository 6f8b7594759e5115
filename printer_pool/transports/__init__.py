"""
Printer Pool Transports
=======================

Byte-level transports for the supported printer types.
"""

from typing import Dict, Mapping

from .base import Transport, Connection
from .ethernet import EthernetTransport
from .usb import UsbTransport
from .bluetooth import BluetoothTransport
from ..models import PrinterType

__all__ = ['Transport', 'Connection', 'EthernetTransport', 'UsbTransport',
           'BluetoothTransport', 'TRANSPORTS', 'default_transports', 'get_transport']

# Transport registry
TRANSPORTS = {
    PrinterType.ETHERNET: EthernetTransport,
    PrinterType.USB: UsbTransport,
    PrinterType.BLUETOOTH: BluetoothTransport,
}


def default_transports() -> Dict[PrinterType, Transport]:
    """Instantiate one transport per printer type."""
    missing = set(PrinterType) - set(TRANSPORTS)
    if missing:
        raise RuntimeError(f'No transport registered for: {sorted(t.value for t in missing)}')
    return {printer_type: cls() for printer_type, cls in TRANSPORTS.items()}


def get_transport(transports: Mapping[PrinterType, Transport], printer_type: PrinterType) -> Transport:
    """Get the transport for a printer type."""
    try:
        return transports[printer_type]
    except KeyError:
        raise RuntimeError(f'No transport registered for {printer_type.value!r}') from None
