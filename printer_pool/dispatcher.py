"""
Print Dispatcher
================

Accepts print jobs, picks a printer from the pool, sends the payload and
reports exactly one terminal result per job.

A failed attempt on an unpinned job is retried on a printer that has not
been tried yet, up to ``max_attempts``. Pinned jobs are never rerouted.
"""

import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor, Future
from typing import Dict, List, Mapping, Optional

import structlog

from .config import (
    OPEN_TIMEOUT, WRITE_TIMEOUT, DEFAULT_MAX_ATTEMPTS, JOB_HISTORY_SIZE, JOB_WORKERS,
)
from .exceptions import (
    NoEligiblePrinter, PrinterConnectionError, TransmissionError,
)
from .models import PrinterType, PrintJob, Completed, Failed, JobResult
from .models.job import Payload
from .pool import PrinterPool, Lease
from .transports import Transport, default_transports, get_transport

logger = structlog.get_logger()

# ESC p m t1 t2 - drawer kick pulse on pin 2
CASH_DRAWER_KICK = b'\x1b\x70\x00\x19\xfa'


class JobHandle:
    """Handle to a job submitted with ``submit_job_async``."""

    def __init__(self, dispatcher: 'PrintDispatcher', job: PrintJob, future: Future):
        self._dispatcher = dispatcher
        self._future = future
        self.job = job

    @property
    def job_id(self) -> str:
        return self.job.id

    def cancel(self) -> bool:
        """Cancel the job if it has not been dispatched yet."""
        return self._dispatcher.cancel_job(self.job)

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float = None) -> JobResult:
        return self._future.result(timeout)


class PrintDispatcher:
    """Dispatches print jobs to the printers of a pool."""

    def __init__(self, pool: PrinterPool,
                 transports: Mapping[PrinterType, Transport] = None,
                 open_timeout: float = OPEN_TIMEOUT,
                 write_timeout: float = WRITE_TIMEOUT,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 history_size: int = JOB_HISTORY_SIZE,
                 job_workers: int = JOB_WORKERS):
        """
        Initialize dispatcher.

        Args:
            pool: Printer pool to dispatch to
            transports: Transport per printer type (defaults to the real ones)
            open_timeout: Seconds allowed for opening a transport
            write_timeout: Seconds allowed for writing a payload
            max_attempts: Default attempts per unpinned job
            history_size: Finished jobs kept for ``list_jobs``
            job_workers: Threads used by ``submit_job_async``
        """
        self.pool = pool
        self.transports = dict(transports) if transports is not None else default_transports()
        self.open_timeout = open_timeout
        self.write_timeout = write_timeout
        self.max_attempts = max_attempts
        self._job_workers = job_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()
        self._history = deque(maxlen=history_size)

    # =========================================================================
    # Submission
    # =========================================================================

    def create_job(self, payload: Payload, target_printer_id: str = None,
                   max_attempts: int = None, source: str = 'api') -> PrintJob:
        """Build a queued job without dispatching it."""
        if max_attempts is None:
            max_attempts = self.max_attempts
        if max_attempts < 1:
            raise ValueError(f'max_attempts must be at least 1, got {max_attempts}')
        if not isinstance(payload, (bytes, bytearray)) and not callable(payload):
            raise TypeError('payload must be bytes or a callable returning bytes')

        job = PrintJob(
            payload=bytes(payload) if isinstance(payload, bytearray) else payload,
            target_printer_id=target_printer_id,
            max_attempts=max_attempts,
            source=source,
        )
        logger.info("Job queued", job_id=job.id, target_printer_id=target_printer_id,
                    max_attempts=max_attempts)
        self.pool.emit('job_queued', printer_id=target_printer_id, job_id=job.id)
        return job

    def submit_job(self, payload: Payload, target_printer_id: str = None,
                   max_attempts: int = None, source: str = 'api') -> JobResult:
        """
        Print a payload and wait for the outcome.

        Args:
            payload: Printer bytes, or ``render(entry) -> bytes`` called with
                the selected printer so content fits its ``print_width``
            target_printer_id: Pin the job to one printer (no rerouting)
            max_attempts: Attempts across printers (default 3)

        Returns:
            Completed(printer_id) or Failed(reason, attempts_exhausted)
        """
        job = self.create_job(payload, target_printer_id, max_attempts, source)
        return self.run_job(job)

    def submit_job_async(self, payload: Payload, target_printer_id: str = None,
                         max_attempts: int = None, source: str = 'api') -> JobHandle:
        """Queue a job on a background worker. The handle can cancel it until dispatch."""
        job = self.create_job(payload, target_printer_id, max_attempts, source)
        future = self._get_executor().submit(self.run_job, job)
        return JobHandle(self, job, future)

    def cancel_job(self, job: PrintJob) -> bool:
        """Cancel a queued job. No effect once dispatch has begun."""
        with self._lock:
            if job.status != 'queued':
                return False
            job.cancel()
        logger.info("Job cancelled", job_id=job.id)
        self.pool.emit('job_cancelled', job_id=job.id)
        return True

    # =========================================================================
    # Job lifecycle
    # =========================================================================

    def run_job(self, job: PrintJob) -> JobResult:
        """Run a queued job to its terminal result."""
        with self._lock:
            if job.status == 'cancelled':
                cancelled = True
            else:
                cancelled = False
                job.status = 'dispatched'
        if cancelled:
            return self._record(job, Failed('Job cancelled', attempts_exhausted=False,
                                            job_id=job.id, attempts=0))

        last_error: Optional[Exception] = None
        while job.attempt < job.max_attempts:
            try:
                lease = self.pool.acquire(job.target_printer_id, exclude=job.tried_printer_ids,
                                          job_id=job.id, include_offline=job.attempt == 0)
            except NoEligiblePrinter as e:
                if last_error is None:
                    return self._finish(job, Failed(str(e), attempts_exhausted=False,
                                                    job_id=job.id, attempts=job.attempt, error=e))
                logger.info("No untried printer left for retry", job_id=job.id,
                            attempts=job.attempt)
                break

            job.dispatch(lease.printer_id)
            logger.info("Job dispatched", job_id=job.id, printer_id=lease.printer_id,
                        attempt=job.attempt, max_attempts=job.max_attempts)
            self.pool.emit('job_processing', printer_id=lease.printer_id, job_id=job.id,
                           attempt=job.attempt)

            try:
                data = self._render(job, lease)
            except Exception as e:
                logger.exception("Rendering failed", job_id=job.id, printer_id=lease.printer_id)
                self.pool.restore(lease)
                return self._finish(job, Failed(f'Render failed: {e}', attempts_exhausted=False,
                                                job_id=job.id, attempts=job.attempt, error=e))

            job.start()
            error = self._attempt(lease, data)
            if error is None:
                return self._finish(job, Completed(lease.printer_id, job_id=job.id,
                                                   attempts=job.attempt))

            last_error = error
            logger.warning("Job attempt failed", job_id=job.id, printer_id=lease.printer_id,
                           attempt=job.attempt, error=str(error), error_type=type(error).__name__)

            if job.target_printer_id is not None:
                break
            if job.attempt < job.max_attempts:
                self.pool.emit('job_retrying', printer_id=lease.printer_id, job_id=job.id,
                               attempt=job.attempt, error=str(error))

        return self._finish(job, Failed(str(last_error), attempts_exhausted=True,
                                        job_id=job.id, attempts=job.attempt, error=last_error))

    def _render(self, job: PrintJob, lease: Lease) -> bytes:
        if not callable(job.payload):
            return job.payload
        data = job.payload(lease.entry)
        if not isinstance(data, (bytes, bytearray)):
            raise TypeError(f'Renderer returned {type(data).__name__}, expected bytes')
        return bytes(data)

    def _attempt(self, lease: Lease, data: Optional[bytes]) -> Optional[Exception]:
        """Send on a worker thread; returns early if the printer is removed.

        ``data=None`` only opens and closes the connection.
        """
        if lease.done:
            return lease.error
        worker = threading.Thread(target=self._transmit, args=(lease, data),
                                  name=f'print-{lease.printer_id}', daemon=True)
        worker.start()
        lease.wait()
        return lease.error

    def _transmit(self, lease: Lease, data: Optional[bytes]):
        if lease.done:
            logger.info("Printer removed before sending", printer_id=lease.printer_id,
                        job_id=lease.job_id)
            return
        error: Optional[Exception] = None
        try:
            transport = get_transport(self.transports, lease.config.type)
            if data is None:
                with transport.connect(lease.config, self.open_timeout):
                    pass
            else:
                sent = transport.send(lease.config, data, self.open_timeout, self.write_timeout)
                logger.debug("Payload sent", printer_id=lease.printer_id, bytes_sent=sent)
        except (PrinterConnectionError, TransmissionError) as e:
            error = e
        except Exception as e:
            logger.exception("Unexpected transport failure", printer_id=lease.printer_id)
            error = TransmissionError(f'Unexpected transport failure: {e}')
        finally:
            self.pool.release(lease, error, completed=data is not None)
            lease.finish(error)

    def _finish(self, job: PrintJob, result: JobResult) -> JobResult:
        with self._lock:
            if result.success:
                job.complete()
            else:
                job.fail(result.reason)

        if result.success:
            logger.info("Job completed", job_id=job.id, printer_id=result.printer_id,
                        attempts=result.attempts)
            self.pool.emit('job_completed', printer_id=result.printer_id, job_id=job.id,
                           attempts=result.attempts)
        else:
            logger.error("Job failed", job_id=job.id, reason=result.reason,
                         attempts=result.attempts, attempts_exhausted=result.attempts_exhausted)
            self.pool.emit('job_failed', printer_id=job.printer_id, job_id=job.id,
                           error=result.reason, attempts_exhausted=result.attempts_exhausted)
        return self._record(job, result)

    def _record(self, job: PrintJob, result: JobResult) -> JobResult:
        with self._lock:
            self._history.append(job)
        return result

    # =========================================================================
    # Convenience operations
    # =========================================================================

    def test_printer(self, printer_id: str) -> Dict:
        """
        Test the connection to a printer.

        Opens and closes the transport without printing. Works on offline
        and disabled printers; on success the printer returns to idle.

        Returns:
            Dict with success, printer_id, status and error
        """
        try:
            lease = self.pool.acquire_probe(printer_id)
        except NoEligiblePrinter as e:
            return {'success': False, 'printer_id': printer_id, 'status': None, 'error': str(e)}

        logger.info("Testing printer connection", printer_id=printer_id,
                    endpoint=lease.config.transport.describe())
        error = self._attempt(lease, None)

        entry = self.pool.get_printer(printer_id)
        return {
            'success': error is None,
            'printer_id': printer_id,
            'endpoint': lease.config.transport.describe(),
            'status': entry.status.value if entry else None,
            'error': str(error) if error else None,
        }

    def open_cash_drawer(self, printer_id: str = None) -> JobResult:
        """Kick the cash drawer attached to a printer (any eligible if not given)."""
        logger.info("Opening cash drawer", printer_id=printer_id)
        return self.submit_job(CASH_DRAWER_KICK, target_printer_id=printer_id,
                               max_attempts=1, source='drawer')

    def print_to_all(self, payload: Payload) -> Dict:
        """
        Print the same payload on every enabled printer in parallel.

        Returns:
            Dict with overall success (at least one printer printed) and
            per-printer results
        """
        printers = [entry for entry in self.pool.get_printers() if entry.enabled]
        if not printers:
            logger.error("No enabled printers for broadcast print")
            return {'success': False, 'results': []}

        logger.info("Broadcast print", printers=len(printers))
        with ThreadPoolExecutor(max_workers=len(printers), thread_name_prefix='print-all') as executor:
            futures = [
                executor.submit(self.submit_job, payload, entry.id, 1, 'broadcast')
                for entry in printers
            ]
            results = []
            for entry, future in zip(printers, futures):
                result = future.result()
                results.append(dict(result.to_dict(), printer_id=entry.id, name=entry.name))

        succeeded = sum(1 for r in results if r['success'])
        logger.info("Broadcast print done", succeeded=succeeded, total=len(results))
        return {'success': succeeded > 0, 'results': results}

    # =========================================================================
    # History
    # =========================================================================

    def list_jobs(self, printer_id: str = None, limit: int = 50) -> List[PrintJob]:
        """Finished jobs, most recent first."""
        with self._lock:
            jobs = list(self._history)
        if printer_id:
            jobs = [j for j in jobs if printer_id in j.tried_printer_ids]
        jobs.reverse()
        return jobs[:limit]

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self._job_workers,
                                                    thread_name_prefix='print-job')
            return self._executor

    def shutdown(self, wait: bool = True):
        """Stop background workers."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
