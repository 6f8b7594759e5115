"""
Ethernet Transport
==================

Raw TCP (port 9100) transport for network thermal printers.
"""

import socket

import structlog

from .base import Transport, Connection
from ..exceptions import PrinterConnectionError, TransmissionError
from ..models import PrinterConfig, EthernetParams

logger = structlog.get_logger()


class EthernetTransport(Transport):
    """Sends raw bytes over a TCP socket."""

    def open(self, config: PrinterConfig, timeout: float) -> Connection:
        params: EthernetParams = config.transport
        host, port = params.ip, params.port

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        try:
            sock.connect((host, port))
        except socket.timeout:
            sock.close()
            raise PrinterConnectionError(f'Connection timeout to {host}:{port}') from None
        except ConnectionRefusedError:
            sock.close()
            raise PrinterConnectionError(f'Connection refused by {host}:{port}') from None
        except OSError as e:
            sock.close()
            raise PrinterConnectionError(f'Cannot connect to {host}:{port}: {e}') from e

        logger.debug("TCP connected", printer_id=config.id, host=host, port=port)
        return Connection(printer_id=config.id, endpoint=f'{host}:{port}', handle=sock)

    def write(self, connection: Connection, data: bytes, timeout: float) -> int:
        sock = connection.handle
        try:
            sock.settimeout(timeout)
            sock.sendall(data)
        except socket.timeout:
            raise TransmissionError(f'Send timeout to {connection.endpoint}') from None
        except OSError as e:
            raise TransmissionError(f'Send to {connection.endpoint} failed: {e}') from e

        connection.bytes_sent += len(data)
        return len(data)

    def close(self, connection: Connection) -> None:
        sock = connection.handle
        if sock is None:
            return
        try:
            sock.close()
        except OSError as e:
            logger.warning("Failed to close TCP socket", endpoint=connection.endpoint, error=str(e))
        connection.handle = None
