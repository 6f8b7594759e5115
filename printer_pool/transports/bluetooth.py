"""
Bluetooth Transport
===================

Bluetooth Classic RFCOMM transport using the built-in socket module
(Linux and Windows builds of CPython expose AF_BLUETOOTH).
"""

import socket

import structlog

from .base import Transport, Connection
from ..config import BLUETOOTH_CHANNEL
from ..exceptions import PrinterConnectionError, TransmissionError
from ..models import PrinterConfig, BluetoothParams

logger = structlog.get_logger()


class BluetoothTransport(Transport):
    """Sends raw bytes over an RFCOMM channel."""

    def __init__(self, channel: int = BLUETOOTH_CHANNEL):
        self.channel = channel

    def _socket(self) -> socket.socket:
        if not hasattr(socket, 'AF_BLUETOOTH'):
            raise PrinterConnectionError('Bluetooth sockets are not supported on this platform')
        return socket.socket(socket.AF_BLUETOOTH, socket.SOCK_STREAM, socket.BTPROTO_RFCOMM)

    def open(self, config: PrinterConfig, timeout: float) -> Connection:
        params: BluetoothParams = config.transport
        address = params.mac_address

        try:
            sock = self._socket()
        except OSError as e:
            raise PrinterConnectionError(f'Bluetooth adapter not available: {e}') from e

        sock.settimeout(timeout)
        try:
            sock.connect((address, self.channel))
        except socket.timeout:
            sock.close()
            raise PrinterConnectionError(f'Bluetooth connection timeout to {address}') from None
        except OSError as e:
            sock.close()
            raise PrinterConnectionError(f'Cannot connect to {address}: {e}') from e

        logger.debug("RFCOMM connected", printer_id=config.id, address=address,
                     channel=self.channel)
        return Connection(printer_id=config.id, endpoint=f'{address}/{self.channel}', handle=sock)

    def write(self, connection: Connection, data: bytes, timeout: float) -> int:
        sock = connection.handle
        try:
            sock.settimeout(timeout)
            sock.sendall(data)
        except socket.timeout:
            raise TransmissionError(f'Bluetooth send timeout to {connection.endpoint}') from None
        except OSError as e:
            raise TransmissionError(f'Bluetooth send to {connection.endpoint} failed: {e}') from e

        connection.bytes_sent += len(data)
        return len(data)

    def close(self, connection: Connection) -> None:
        sock = connection.handle
        if sock is None:
            return
        try:
            sock.close()
        except OSError as e:
            logger.warning("Failed to close RFCOMM socket", endpoint=connection.endpoint,
                           error=str(e))
        connection.handle = None
