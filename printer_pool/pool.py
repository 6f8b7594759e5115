"""
Printer Pool
============

Registry of configured printers and their live status.

The pool is the single owner of printer state. Configuration changes take
the pool-wide lock; status transitions take the per-printer lock, so a
job finishing on one printer never waits on a job running on another.
Transport I/O never happens while either lock is held.

Status transitions::

    idle | error --dispatch--> busy
    offline --dispatch, nothing else available--> busy
    busy --printed--> idle (jobs_completed += 1)
    busy --open failed--> offline
    busy --write failed--> error

Offline printers are the last choice for a new job and are never picked
for a retry. A successful print or connection test (``acquire_probe``)
returns them to idle.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Union

import structlog

from .exceptions import (
    NoEligiblePrinter, PrinterConnectionError, PrinterRemoved, ValidationError,
)
from .models import PrinterConfig, PrinterEntry, PrinterStatus, PrintEvent
from .models.printer import PrinterSlot
from .validation import parse_printer_config

logger = structlog.get_logger()

ELIGIBLE_STATUSES = (PrinterStatus.IDLE, PrinterStatus.ERROR)

# Lower ranks are picked first
STATUS_RANK = {PrinterStatus.IDLE: 0, PrinterStatus.ERROR: 1, PrinterStatus.OFFLINE: 2}

EventListener = Callable[[PrintEvent], None]
ConfigInput = Union[PrinterConfig, Mapping]


class Lease:
    """Exclusive claim on a printer for one job attempt.

    Created by ``PrinterPool.acquire`` when the printer enters ``busy`` and
    settled by ``PrinterPool.release`` (or by removal of the printer).
    """

    def __init__(self, slot: PrinterSlot, entry: PrinterEntry, previous_status: PrinterStatus,
                 job_id: str = None):
        self._slot = slot
        self._done = threading.Event()
        self.entry = entry
        self.previous_status = previous_status
        self.job_id = job_id
        self.removed = False
        self.error: Optional[Exception] = None

    @property
    def printer_id(self) -> str:
        return self.entry.id

    @property
    def config(self) -> PrinterConfig:
        return self.entry.config

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float = None) -> bool:
        """Block until the attempt settles or the printer is removed."""
        return self._done.wait(timeout)

    def finish(self, error: Optional[Exception] = None):
        if not self._done.is_set():
            self.error = error
        self._done.set()

    def abort_removed(self):
        self.removed = True
        self.error = PrinterRemoved(f'Printer {self.printer_id} was removed during printing')
        self._done.set()


class PrinterPool:
    """Thread-safe registry of printer entries."""

    def __init__(self, store=None):
        """
        Initialize the pool.

        Args:
            store: Optional persistence collaborator with ``load()`` and
                ``save(configs)``; saved after every successful mutation
        """
        self.store = store
        self._lock = threading.RLock()
        self._slots: Dict[str, PrinterSlot] = {}
        self._listeners: List[EventListener] = []
        self._listeners_lock = threading.Lock()
        self._saver = ThreadPoolExecutor(max_workers=1, thread_name_prefix='printer-store') if store else None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def load(self) -> int:
        """Register the printers held by the store. Returns count loaded."""
        if self.store is None:
            return 0

        try:
            configs = self.store.load()
        except (OSError, ValueError) as e:
            logger.error("Failed to load printers", error=str(e))
            return 0

        loaded = 0
        for config in configs:
            if self._add(config, persist=False):
                loaded += 1
        logger.info("Printer pool loaded", printers=loaded)
        return loaded

    def close(self):
        """Wait for pending saves and stop the save worker."""
        if self._saver is not None:
            self._saver.shutdown(wait=True)

    # =========================================================================
    # Events
    # =========================================================================

    def add_listener(self, callback: EventListener) -> Callable[[], None]:
        """Register an event listener. Returns a function that removes it."""
        with self._listeners_lock:
            self._listeners.append(callback)

        def unsubscribe():
            with self._listeners_lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def emit(self, event_type: str, printer_id: str = None, job_id: str = None, **data):
        """Deliver an event to every listener; listener errors are logged."""
        event = PrintEvent(type=event_type, printer_id=printer_id, job_id=job_id, data=data)
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Listener error", event_type=event_type)

    # =========================================================================
    # Configuration
    # =========================================================================

    def add_printer(self, config: ConfigInput) -> bool:
        """
        Add a printer.

        Returns:
            False (and no change) if the config is invalid or the id exists
        """
        try:
            config = parse_printer_config(config)
        except ValidationError as e:
            logger.warning("Rejected printer config", error=str(e), field=e.field)
            return False
        return self._add(config, persist=True)

    def _add(self, config: PrinterConfig, persist: bool) -> bool:
        with self._lock:
            if config.id in self._slots:
                logger.warning("Printer already exists", printer_id=config.id)
                return False
            self._slots[config.id] = PrinterSlot(config=config)
            configs = self._configs()

        logger.info("Printer added", printer_id=config.id, name=config.name,
                    type=config.type.value, endpoint=config.transport.describe())
        self.emit('printer_added', printer_id=config.id, name=config.name, type=config.type.value)
        if persist:
            self._schedule_save(configs)
        return True

    def remove_printer(self, printer_id: str) -> bool:
        """Remove a printer. A job in flight on it fails with PrinterRemoved."""
        with self._lock:
            slot = self._slots.pop(printer_id, None)
            if slot is None:
                logger.warning("Printer not found", printer_id=printer_id)
                return False
            with slot.lock:
                slot.removed = True
                lease, slot.lease = slot.lease, None
            configs = self._configs()

        if lease is not None:
            logger.warning("Printer removed with job in flight", printer_id=printer_id,
                           job_id=lease.job_id)
            lease.abort_removed()

        logger.info("Printer removed", printer_id=printer_id)
        self.emit('printer_removed', printer_id=printer_id)
        self._schedule_save(configs)
        return True

    def update_printer(self, printer_id: str, config: ConfigInput) -> bool:
        """
        Replace a printer's configuration in place.

        Status and completed-job count are preserved. A dict without
        ``enabled`` keeps the current flag.
        """
        with self._lock:
            slot = self._slots.get(printer_id)
            if slot is None:
                logger.warning("Printer not found for update", printer_id=printer_id)
                return False

            if isinstance(config, Mapping) and 'enabled' not in config:
                config = dict(config, enabled=slot.config.enabled)
            try:
                config = parse_printer_config(config, printer_id=printer_id)
            except ValidationError as e:
                logger.warning("Rejected printer update", printer_id=printer_id,
                               error=str(e), field=e.field)
                return False

            with slot.lock:
                slot.config = config
            configs = self._configs()

        logger.info("Printer updated", printer_id=printer_id, name=config.name,
                    type=config.type.value, endpoint=config.transport.describe())
        self.emit('printer_updated', printer_id=printer_id, config=config.to_dict())
        self._schedule_save(configs)
        return True

    def set_printer_enabled(self, printer_id: str, enabled: bool) -> bool:
        """Toggle dispatch eligibility without touching status."""
        with self._lock:
            slot = self._slots.get(printer_id)
            if slot is None:
                logger.warning("Printer not found", printer_id=printer_id)
                return False
            with slot.lock:
                old = slot.config.enabled
                slot.config = replace(slot.config, enabled=bool(enabled))
                status = slot.status
            configs = self._configs()

        logger.info("Printer enabled changed", printer_id=printer_id, old=old, new=bool(enabled))
        self.emit('printer_status_changed', printer_id=printer_id,
                  enabled=bool(enabled), status=status.value)
        self._schedule_save(configs)
        return True

    # =========================================================================
    # Queries
    # =========================================================================

    def get_printers(self) -> List[PrinterEntry]:
        """Snapshot of all printers in insertion order."""
        with self._lock:
            slots = list(self._slots.values())
        entries = []
        for slot in slots:
            with slot.lock:
                entries.append(slot.snapshot())
        return entries

    def get_printer(self, printer_id: str) -> Optional[PrinterEntry]:
        with self._lock:
            slot = self._slots.get(printer_id)
        if slot is None:
            return None
        with slot.lock:
            return slot.snapshot()

    def get_status(self) -> Dict:
        """Summary counts plus a short per-printer listing."""
        entries = self.get_printers()
        counts = {status.value: 0 for status in PrinterStatus}
        for entry in entries:
            counts[entry.status.value] += 1
        return {
            'total': len(entries),
            'enabled': sum(1 for e in entries if e.enabled),
            'by_status': counts,
            'printers': [
                {
                    'id': e.id,
                    'name': e.name,
                    'type': e.type.value,
                    'status': e.status.value,
                    'enabled': e.enabled,
                    'jobs_completed': e.jobs_completed,
                    'last_error': e.last_error,
                }
                for e in entries
            ],
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)

    def __contains__(self, printer_id: str) -> bool:
        with self._lock:
            return printer_id in self._slots

    # =========================================================================
    # Dispatch support
    # =========================================================================

    def acquire(self, target_printer_id: str = None, exclude: Iterable[str] = (),
                job_id: str = None, include_offline: bool = False) -> Lease:
        """
        Select an eligible printer and mark it busy.

        Candidates are enabled printers in idle or error status. Idle beats
        error, then fewest completed jobs, then insertion order. A pinned
        target is the only candidate.

        With ``include_offline`` offline printers are candidates too, ranked
        after every idle and error printer, so a new job re-probes them only
        when nothing healthier is available.

        Raises:
            NoEligiblePrinter: No candidate is available
        """
        exclude = set(exclude)
        statuses = ELIGIBLE_STATUSES + ((PrinterStatus.OFFLINE,) if include_offline else ())
        with self._lock:
            if target_printer_id is not None:
                slot = self._slots.get(target_printer_id)
                if slot is None:
                    raise NoEligiblePrinter(f'Printer {target_printer_id} not found')
                candidates = [slot]
            else:
                candidates = [s for pid, s in self._slots.items() if pid not in exclude]

            ranked = []
            for index, slot in enumerate(candidates):
                with slot.lock:
                    if slot.config.enabled and slot.status in statuses:
                        ranked.append((STATUS_RANK[slot.status], slot.jobs_completed, index, slot))
            ranked.sort(key=lambda item: item[:3])

            lease = None
            for _, _, _, slot in ranked:
                with slot.lock:
                    if slot.removed or not slot.config.enabled or slot.status not in statuses:
                        continue
                    previous = slot.status
                    slot.status = PrinterStatus.BUSY
                    lease = Lease(slot, slot.snapshot(), previous, job_id=job_id)
                    slot.lease = lease
                break

        if lease is None:
            if target_printer_id is not None:
                raise NoEligiblePrinter(f'Printer {target_printer_id} is disabled or not available')
            raise NoEligiblePrinter('No enabled printer is available')

        self._log_transition(lease.printer_id, lease.previous_status, PrinterStatus.BUSY)
        self.emit('printer_status_changed', printer_id=lease.printer_id,
                  status=PrinterStatus.BUSY.value, job_id=job_id)
        return lease

    def acquire_probe(self, printer_id: str) -> Lease:
        """
        Mark a printer busy for a connection test.

        Any status except ``busy`` qualifies, disabled printers included,
        so an ``offline`` printer can be brought back.

        Raises:
            NoEligiblePrinter: Printer unknown or busy
        """
        with self._lock:
            slot = self._slots.get(printer_id)
            if slot is None:
                raise NoEligiblePrinter(f'Printer {printer_id} not found')
            with slot.lock:
                if slot.status is PrinterStatus.BUSY:
                    raise NoEligiblePrinter(f'Printer {printer_id} is busy')
                previous = slot.status
                slot.status = PrinterStatus.BUSY
                lease = Lease(slot, slot.snapshot(), previous)
                slot.lease = lease

        self._log_transition(printer_id, previous, PrinterStatus.BUSY)
        self.emit('printer_status_changed', printer_id=printer_id, status=PrinterStatus.BUSY.value)
        return lease

    def release(self, lease: Lease, error: Exception = None, completed: bool = True) -> bool:
        """
        Settle a lease after a transport attempt.

        Args:
            lease: Lease from ``acquire`` or ``acquire_probe``
            error: Failure of the attempt, None on success
            completed: Count a success as a printed job (False for probes)

        Returns:
            False if the printer was removed meanwhile (nothing changes)
        """
        slot = lease._slot
        with slot.lock:
            if slot.removed or slot.lease is not lease:
                return False
            slot.lease = None
            if error is None:
                new_status = PrinterStatus.IDLE
                slot.last_error = None
                if completed:
                    slot.jobs_completed += 1
                    slot.last_active_at = datetime.now()
            elif isinstance(error, PrinterConnectionError):
                new_status = PrinterStatus.OFFLINE
                slot.last_error = str(error)
            else:
                new_status = PrinterStatus.ERROR
                slot.last_error = str(error)
            slot.status = new_status
            jobs_completed = slot.jobs_completed

        self._log_transition(lease.printer_id, PrinterStatus.BUSY, new_status, error)
        self.emit('printer_status_changed', printer_id=lease.printer_id,
                  status=new_status.value, error=str(error) if error else None,
                  jobs_completed=jobs_completed)
        return True

    def restore(self, lease: Lease) -> bool:
        """Give a lease back unused; status returns to what it was before."""
        slot = lease._slot
        with slot.lock:
            if slot.removed or slot.lease is not lease:
                return False
            slot.lease = None
            slot.status = lease.previous_status

        self._log_transition(lease.printer_id, PrinterStatus.BUSY, lease.previous_status)
        self.emit('printer_status_changed', printer_id=lease.printer_id,
                  status=lease.previous_status.value)
        return True

    # =========================================================================
    # Internals
    # =========================================================================

    def _configs(self) -> List[PrinterConfig]:
        # Caller holds self._lock
        return [slot.config for slot in self._slots.values()]

    def _schedule_save(self, configs: List[PrinterConfig]):
        if self._saver is None:
            return
        try:
            self._saver.submit(self._save, configs)
        except RuntimeError:
            logger.warning("Printer store closed, change not saved", count=len(configs))

    def _save(self, configs: List[PrinterConfig]):
        try:
            self.store.save(configs)
        except Exception:
            logger.exception("Failed to save printers", count=len(configs))

    @staticmethod
    def _log_transition(printer_id: str, old: PrinterStatus, new: PrinterStatus,
                        error: Exception = None):
        if error is not None:
            logger.warning("Printer status changed", printer_id=printer_id,
                           old=old.value, new=new.value, error=str(error))
        else:
            logger.info("Printer status changed", printer_id=printer_id,
                        old=old.value, new=new.value)
