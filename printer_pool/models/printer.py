"""
Printer Model
=============

Configuration and runtime state of a printer in the pool.
"""

import threading
from datetime import datetime
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Dict, Any, Union, ClassVar

from ..config import ETHERNET_PORT, DEFAULT_PRINT_WIDTH


class PrinterType(str, Enum):
    """Physical transport used to reach a printer."""

    ETHERNET = 'ethernet'
    USB = 'usb'
    BLUETOOTH = 'bluetooth'


class PrinterStatus(str, Enum):
    """Live status of a printer entry."""

    IDLE = 'idle'
    BUSY = 'busy'
    OFFLINE = 'offline'
    ERROR = 'error'


@dataclass(frozen=True)
class EthernetParams:
    """Raw TCP printer address."""

    type: ClassVar[PrinterType] = PrinterType.ETHERNET

    ip: str
    port: int = ETHERNET_PORT

    def describe(self) -> str:
        return f'{self.ip}:{self.port}'


@dataclass(frozen=True)
class UsbParams:
    """USB vendor/product pair."""

    type: ClassVar[PrinterType] = PrinterType.USB

    vendor_id: int
    product_id: int

    def describe(self) -> str:
        return f'VID={self.vendor_id:04x} PID={self.product_id:04x}'


@dataclass(frozen=True)
class BluetoothParams:
    """Bluetooth Classic device address."""

    type: ClassVar[PrinterType] = PrinterType.BLUETOOTH

    mac_address: str

    def describe(self) -> str:
        return self.mac_address


TransportParams = Union[EthernetParams, UsbParams, BluetoothParams]


@dataclass(frozen=True)
class PrinterConfig:
    """User-editable printer configuration (the persisted part)."""

    id: str
    name: str
    transport: TransportParams
    enabled: bool = True
    print_width: int = DEFAULT_PRINT_WIDTH

    @property
    def type(self) -> PrinterType:
        return self.transport.type

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a flat dictionary for JSON serialization."""
        data = {
            'id': self.id,
            'name': self.name,
            'type': self.type.value,
        }
        data.update(asdict(self.transport))
        data['enabled'] = self.enabled
        data['print_width'] = self.print_width
        return data


@dataclass(frozen=True)
class PrinterEntry:
    """Immutable snapshot of a printer in the pool."""

    config: PrinterConfig
    status: PrinterStatus = PrinterStatus.IDLE
    jobs_completed: int = 0
    last_error: Optional[str] = None
    last_active_at: Optional[datetime] = None

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def type(self) -> PrinterType:
        return self.config.type

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def print_width(self) -> int:
        return self.config.print_width

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = self.config.to_dict()
        data['status'] = self.status.value
        data['jobs_completed'] = self.jobs_completed
        data['last_error'] = self.last_error
        data['last_active_at'] = self.last_active_at.isoformat() if self.last_active_at else None
        return data


@dataclass
class PrinterSlot:
    """Mutable runtime record owned by the pool.

    Only the pool touches these, always under ``lock``.
    """

    config: PrinterConfig
    status: PrinterStatus = PrinterStatus.IDLE
    jobs_completed: int = 0
    last_error: Optional[str] = None
    last_active_at: Optional[datetime] = None
    removed: bool = False
    lease: Any = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def snapshot(self) -> PrinterEntry:
        return PrinterEntry(
            config=self.config,
            status=self.status,
            jobs_completed=self.jobs_completed,
            last_error=self.last_error,
            last_active_at=self.last_active_at,
        )
