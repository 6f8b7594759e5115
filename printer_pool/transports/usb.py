"""
USB Transport
=============

USB transport for thermal printers, via python-escpos (pyusb backend).
"""

import structlog
from escpos import exceptions as escpos_exceptions
from escpos.printer import Usb

from .base import Transport, Connection
from ..exceptions import PrinterConnectionError, TransmissionError
from ..models import PrinterConfig, UsbParams

logger = structlog.get_logger()

# pyusb raises USBError (an OSError) for I/O, NoBackendError (a ValueError)
# when libusb is missing
USB_ERRORS = (escpos_exceptions.Error, OSError, ValueError)


class UsbTransport(Transport):
    """Writes raw bytes to the printer's bulk OUT endpoint."""

    def __init__(self, printer_class=Usb):
        self._printer_class = printer_class

    def open(self, config: PrinterConfig, timeout: float) -> Connection:
        params: UsbParams = config.transport
        endpoint = params.describe()

        try:
            device = self._printer_class(params.vendor_id, params.product_id,
                                         timeout=int(timeout * 1000))
            device.open()
        except USB_ERRORS as e:
            raise PrinterConnectionError(f'USB printer {endpoint} not available: {e}') from e

        logger.debug("USB device opened", printer_id=config.id, device=endpoint)
        return Connection(printer_id=config.id, endpoint=endpoint, handle=device)

    def write(self, connection: Connection, data: bytes, timeout: float) -> int:
        device = connection.handle
        try:
            device.timeout = int(timeout * 1000)
            device._raw(data)
        except USB_ERRORS as e:
            raise TransmissionError(f'USB write to {connection.endpoint} failed: {e}') from e

        connection.bytes_sent += len(data)
        return len(data)

    def close(self, connection: Connection) -> None:
        device = connection.handle
        if device is None:
            return
        try:
            device.close()
        except USB_ERRORS as e:
            logger.warning("Failed to release USB device", device=connection.endpoint, error=str(e))
        connection.handle = None
