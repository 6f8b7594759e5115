"""
Printer Pool Exceptions
=======================

Error taxonomy shared by the pool, the dispatcher and the transports.
"""


class PrinterPoolError(Exception):
    """Base class for printer pool errors."""


class ValidationError(PrinterPoolError):
    """Printer configuration is missing or has malformed fields."""

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class NoEligiblePrinter(PrinterPoolError):
    """No enabled printer in idle or error status was available."""


class PrinterConnectionError(PrinterPoolError):
    """Transport could not be opened (timeout, refused, device absent)."""


class TransmissionError(PrinterPoolError):
    """Write failed after the transport was opened."""


class PrinterRemoved(PrinterPoolError):
    """Printer was removed from the pool while a job was in flight."""
