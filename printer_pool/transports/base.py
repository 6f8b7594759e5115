"""
Base Transport
==============

Abstract base class for printer transports.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

import structlog

from ..models import PrinterConfig

logger = structlog.get_logger()


@dataclass
class Connection:
    """Open handle to a printer, returned by ``Transport.open``."""

    printer_id: str
    endpoint: str
    handle: Any = None
    bytes_sent: int = 0


class Transport(ABC):
    """Abstract base class for printer transports.

    ``open`` raises ``PrinterConnectionError`` when the endpoint cannot be
    reached and ``write`` raises ``TransmissionError`` when the payload
    cannot be delivered. The two map to different printer statuses.
    """

    @abstractmethod
    def open(self, config: PrinterConfig, timeout: float) -> Connection:
        """
        Open a connection to the printer.

        Args:
            config: Printer configuration with transport parameters
            timeout: Seconds to wait for the endpoint

        Returns:
            Open Connection

        Raises:
            PrinterConnectionError: Endpoint unreachable, refused, or absent
        """

    @abstractmethod
    def write(self, connection: Connection, data: bytes, timeout: float) -> int:
        """
        Write a payload.

        Args:
            connection: Connection returned by ``open``
            data: Raw printer bytes
            timeout: Seconds to wait for the write

        Returns:
            Number of bytes written

        Raises:
            TransmissionError: Write failed or timed out
        """

    @abstractmethod
    def close(self, connection: Connection) -> None:
        """Release the connection. Must not raise."""

    @contextmanager
    def connect(self, config: PrinterConfig, timeout: float) -> Iterator[Connection]:
        """Open a connection that is closed on every exit path."""
        connection = self.open(config, timeout)
        try:
            yield connection
        finally:
            self.close(connection)
            logger.debug("Transport closed", printer_id=config.id,
                         endpoint=connection.endpoint)

    def send(self, config: PrinterConfig, data: bytes,
             open_timeout: float, write_timeout: float) -> int:
        """Open, write and close in one call."""
        with self.connect(config, open_timeout) as connection:
            return self.write(connection, data, write_timeout)
