"""
Print Job Model
===============

Represents a print job owned by the dispatcher, and its terminal result.
"""

import uuid
from datetime import datetime
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Union, Callable

from ..config import DEFAULT_MAX_ATTEMPTS

# Raw bytes, or a callable that lays content out for the selected printer.
Payload = Union[bytes, Callable[[Any], bytes]]


@dataclass
class PrintJob:
    """Print job configuration and state."""

    # Identification
    id: str = field(default_factory=lambda: f"JOB-{str(uuid.uuid4())[:8].upper()}")
    payload: Payload = b""

    # Routing
    target_printer_id: Optional[str] = None
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    attempt: int = 0
    tried_printer_ids: List[str] = field(default_factory=list)
    printer_id: Optional[str] = None  # printer of the current/last attempt

    # Status
    status: str = "queued"  # queued, dispatched, printing, completed, failed, cancelled
    error_message: Optional[str] = None

    # Timestamps
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Source
    source: str = "api"  # api, drawer, broadcast

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization (payload omitted)."""
        data = {
            'id': self.id,
            'target_printer_id': self.target_printer_id,
            'printer_id': self.printer_id,
            'attempt': self.attempt,
            'max_attempts': self.max_attempts,
            'tried_printer_ids': list(self.tried_printer_ids),
            'status': self.status,
            'error_message': self.error_message,
            'source': self.source,
            'payload_size': len(self.payload) if isinstance(self.payload, bytes) else None,
        }
        for key in ['created_at', 'started_at', 'completed_at']:
            value = getattr(self, key)
            data[key] = value.isoformat() if value else None
        return data

    def dispatch(self, printer_id: str):
        """Mark job as dispatched to a printer for a new attempt."""
        self.status = "dispatched"
        self.attempt += 1
        self.printer_id = printer_id
        self.tried_printer_ids.append(printer_id)
        if self.started_at is None:
            self.started_at = datetime.now()

    def start(self):
        """Mark job as printing."""
        self.status = "printing"

    def complete(self):
        """Mark job as completed."""
        self.status = "completed"
        self.completed_at = datetime.now()
        self.error_message = None

    def fail(self, error: str):
        """Mark job as failed."""
        self.status = "failed"
        self.completed_at = datetime.now()
        self.error_message = error

    def cancel(self):
        """Mark job as cancelled."""
        self.status = "cancelled"
        self.completed_at = datetime.now()
        self.error_message = "Job cancelled"


@dataclass(frozen=True)
class Completed:
    """Job printed successfully."""

    printer_id: str
    job_id: Optional[str] = None
    attempts: int = 1

    success = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': True,
            'printer_id': self.printer_id,
            'job_id': self.job_id,
            'attempts': self.attempts,
        }


@dataclass(frozen=True)
class Failed:
    """Job reached a terminal failure.

    ``attempts_exhausted`` is True when at least one transport attempt was
    made and no further attempt is possible.
    """

    reason: str
    attempts_exhausted: bool = False
    job_id: Optional[str] = None
    attempts: int = 0
    error: Optional[Exception] = field(default=None, compare=False, repr=False)

    success = False

    @property
    def error_type(self) -> Optional[str]:
        return type(self.error).__name__ if self.error is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': False,
            'error': self.reason,
            'error_type': self.error_type,
            'attempts_exhausted': self.attempts_exhausted,
            'job_id': self.job_id,
            'attempts': self.attempts,
        }


JobResult = Union[Completed, Failed]


@dataclass(frozen=True)
class PrintEvent:
    """Notification delivered to pool listeners."""

    type: str
    timestamp: datetime = field(default_factory=datetime.now)
    printer_id: Optional[str] = None
    job_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'timestamp': self.timestamp.isoformat(),
            'printer_id': self.printer_id,
            'job_id': self.job_id,
            'data': dict(self.data),
        }
