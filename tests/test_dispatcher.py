"""Tests for job dispatch, retry and terminal results."""

import threading
import time

import pytest

from printer_pool.dispatcher import PrintDispatcher, CASH_DRAWER_KICK
from printer_pool.models import PrinterType, PrinterStatus, Completed, Failed

from .conftest import ethernet

RECEIPT = b'\x1b@Hello\n'


class TestSuccessfulJobs:
    """Tests for jobs that print."""

    def test_completed_job_counts_once(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))

        result = dispatcher.submit_job(RECEIPT)

        assert isinstance(result, Completed)
        assert result.printer_id == 'p1'
        assert result.attempts == 1
        entry = pool.get_printer('p1')
        assert entry.status is PrinterStatus.IDLE
        assert entry.jobs_completed == 1
        assert transport.sent == [('p1', RECEIPT)]

    def test_sequential_jobs_balance_across_printers(self, pool, dispatcher):
        pool.add_printer(ethernet('p1'))
        pool.add_printer(ethernet('p2'))

        first = dispatcher.submit_job(RECEIPT)
        second = dispatcher.submit_job(RECEIPT)

        assert {first.printer_id, second.printer_id} == {'p1', 'p2'}
        assert [p.jobs_completed for p in pool.get_printers()] == [1, 1]

    def test_concurrent_jobs_use_different_printers(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        pool.add_printer(ethernet('p2'))
        gate1 = transport.block('p1')
        gate2 = transport.block('p2')

        first = dispatcher.submit_job_async(RECEIPT)
        assert transport.entered['p1'].wait(2)
        second = dispatcher.submit_job_async(RECEIPT)
        assert transport.entered['p2'].wait(2)

        assert [p.status for p in pool.get_printers()] == [PrinterStatus.BUSY, PrinterStatus.BUSY]
        gate1.set()
        gate2.set()

        assert first.result(2).printer_id == 'p1'
        assert second.result(2).printer_id == 'p2'

    def test_busy_printer_is_not_chosen(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        gate = transport.block('p1')
        handle = dispatcher.submit_job_async(RECEIPT)
        assert transport.entered['p1'].wait(2)

        result = dispatcher.submit_job(RECEIPT)

        assert isinstance(result, Failed)
        assert result.attempts_exhausted is False
        assert result.error_type == 'NoEligiblePrinter'
        gate.set()
        assert handle.result(2).success

    def test_connection_closed_after_success(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        dispatcher.submit_job(RECEIPT)
        assert transport.opened == ['p1']
        assert transport.closed == ['p1']


class TestFailures:
    """Tests for failed attempts and rerouting."""

    def test_open_failure_marks_offline(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        transport.fail_open.add('p1')

        result = dispatcher.submit_job(RECEIPT)

        assert isinstance(result, Failed)
        assert result.attempts_exhausted is True
        assert result.attempts == 1
        assert result.error_type == 'PrinterConnectionError'
        entry = pool.get_printer('p1')
        assert entry.status is PrinterStatus.OFFLINE
        assert entry.jobs_completed == 0

    def test_write_failure_marks_error_and_reroutes(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        pool.add_printer(ethernet('p2'))
        transport.fail_write.add('p1')

        result = dispatcher.submit_job(RECEIPT)

        assert isinstance(result, Completed)
        assert result.printer_id == 'p2'
        assert result.attempts == 2
        assert pool.get_printer('p1').status is PrinterStatus.ERROR
        assert pool.get_printer('p2').jobs_completed == 1
        # Both connections were released
        assert sorted(transport.closed) == ['p1', 'p2']

    def test_three_failing_printers_exhaust_attempts(self, pool, dispatcher, transport):
        for printer_id in ('p1', 'p2', 'p3'):
            pool.add_printer(ethernet(printer_id))
            transport.fail_open.add(printer_id)

        result = dispatcher.submit_job(RECEIPT)

        assert isinstance(result, Failed)
        assert result.attempts_exhausted is True
        assert result.attempts == 3
        assert sorted(transport.opened) == ['p1', 'p2', 'p3']
        assert all(p.status is PrinterStatus.OFFLINE for p in pool.get_printers())

    def test_max_attempts_caps_tries(self, pool, dispatcher, transport):
        for printer_id in ('p1', 'p2', 'p3'):
            pool.add_printer(ethernet(printer_id))
            transport.fail_write.add(printer_id)

        result = dispatcher.submit_job(RECEIPT, max_attempts=2)

        assert result.attempts == 2
        assert result.attempts_exhausted is True
        assert len(transport.opened) == 2

    def test_retry_without_untried_printer_ends_job(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        transport.fail_write.add('p1')

        result = dispatcher.submit_job(RECEIPT, max_attempts=3)

        assert isinstance(result, Failed)
        assert result.attempts == 1
        assert result.attempts_exhausted is True
        assert 'Broken pipe' in result.reason

    def test_error_status_printer_gets_another_job(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        transport.fail_write.add('p1')
        dispatcher.submit_job(RECEIPT)
        transport.fail_write.clear()

        result = dispatcher.submit_job(RECEIPT)

        assert isinstance(result, Completed)
        assert pool.get_printer('p1').status is PrinterStatus.IDLE

    def test_offline_printer_is_skipped(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        pool.add_printer(ethernet('p2'))
        transport.fail_open.add('p1')
        dispatcher.submit_job(RECEIPT)
        transport.fail_open.clear()

        result = dispatcher.submit_job(RECEIPT)

        assert result.printer_id == 'p2'
        assert transport.opened.count('p1') == 1

    def test_recovered_offline_printer_takes_next_job(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        transport.fail_open.add('p1')
        dispatcher.submit_job(RECEIPT)
        assert pool.get_printer('p1').status is PrinterStatus.OFFLINE
        transport.fail_open.clear()

        result = dispatcher.submit_job(RECEIPT)

        assert isinstance(result, Completed)
        assert result.printer_id == 'p1'
        entry = pool.get_printer('p1')
        assert entry.status is PrinterStatus.IDLE
        assert entry.jobs_completed == 1
        assert entry.last_error is None

    def test_still_offline_printer_fails_new_job(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        transport.fail_open.add('p1')
        dispatcher.submit_job(RECEIPT)

        result = dispatcher.submit_job(RECEIPT)

        assert result.error_type == 'PrinterConnectionError'
        assert result.attempts_exhausted is True
        assert transport.opened == ['p1', 'p1']

    def test_offline_printer_is_not_used_for_retry(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        pool.add_printer(ethernet('p2'))
        transport.fail_open.add('p1')
        dispatcher.submit_job(RECEIPT)
        transport.fail_open.clear()
        transport.fail_write.add('p2')

        result = dispatcher.submit_job(RECEIPT)

        assert isinstance(result, Failed)
        assert result.attempts == 1
        assert transport.opened.count('p1') == 1
        assert pool.get_printer('p1').status is PrinterStatus.OFFLINE

    def test_only_disabled_printers(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1', enabled=False))

        result = dispatcher.submit_job(RECEIPT)

        assert isinstance(result, Failed)
        assert result.attempts_exhausted is False
        assert result.attempts == 0
        assert transport.opened == []

    def test_disabling_only_printer_blocks_next_job(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        assert dispatcher.submit_job(RECEIPT).success

        pool.set_printer_enabled('p1', False)
        result = dispatcher.submit_job(RECEIPT)

        assert result.error_type == 'NoEligiblePrinter'
        assert transport.opened == ['p1']

    def test_empty_pool(self, dispatcher):
        result = dispatcher.submit_job(RECEIPT)
        assert isinstance(result, Failed)
        assert result.attempts_exhausted is False

    def test_unexpected_transport_error_is_a_write_failure(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))

        def explode(connection, data, timeout):
            raise RuntimeError('driver bug')

        transport.write = explode

        result = dispatcher.submit_job(RECEIPT)

        assert result.error_type == 'TransmissionError'
        assert pool.get_printer('p1').status is PrinterStatus.ERROR
        assert transport.closed == ['p1']


class TestPinnedJobs:
    """Tests for jobs with a target printer."""

    def test_prints_on_target(self, pool, dispatcher):
        pool.add_printer(ethernet('p1'))
        pool.add_printer(ethernet('p2'))

        result = dispatcher.submit_job(RECEIPT, target_printer_id='p2')

        assert result.printer_id == 'p2'

    def test_failure_is_not_rerouted(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        pool.add_printer(ethernet('p2'))
        transport.fail_open.add('p2')

        result = dispatcher.submit_job(RECEIPT, target_printer_id='p2')

        assert isinstance(result, Failed)
        assert result.attempts == 1
        assert result.attempts_exhausted is True
        assert transport.opened == ['p2']

    def test_disabled_target(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        pool.add_printer(ethernet('p2', enabled=False))

        result = dispatcher.submit_job(RECEIPT, target_printer_id='p2')

        assert isinstance(result, Failed)
        assert result.attempts_exhausted is False
        assert transport.opened == []

    def test_unknown_target(self, pool, dispatcher):
        pool.add_printer(ethernet('p1'))

        result = dispatcher.submit_job(RECEIPT, target_printer_id='nope')

        assert isinstance(result, Failed)
        assert result.error_type == 'NoEligiblePrinter'


class TestRemovalDuringPrint:
    """Tests for printers removed while a job is on them."""

    def test_pinned_job_fails_promptly(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        transport.block('p1')
        handle = dispatcher.submit_job_async(RECEIPT, target_printer_id='p1')
        assert transport.entered['p1'].wait(2)

        started = time.monotonic()
        assert pool.remove_printer('p1') is True
        result = handle.result(2)

        assert time.monotonic() - started < 1
        assert isinstance(result, Failed)
        assert result.error_type == 'PrinterRemoved'
        assert pool.get_printer('p1') is None

    def test_unpinned_job_moves_on(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        pool.add_printer(ethernet('p2'))
        transport.block('p1')
        handle = dispatcher.submit_job_async(RECEIPT)
        assert transport.entered['p1'].wait(2)

        pool.remove_printer('p1')
        result = handle.result(2)

        assert isinstance(result, Completed)
        assert result.printer_id == 'p2'
        assert result.attempts == 2

    def test_removal_during_render_skips_send(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        pool.add_printer(ethernet('p2'))

        def render(entry):
            if entry.id == 'p1':
                pool.remove_printer('p1')
            return RECEIPT

        result = dispatcher.submit_job(render)

        assert isinstance(result, Completed)
        assert result.printer_id == 'p2'
        assert result.attempts == 2
        assert transport.sent == [('p2', RECEIPT)]
        assert 'p1' not in transport.opened

    def test_late_completion_does_not_resurrect(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        gate = transport.block('p1')
        handle = dispatcher.submit_job_async(RECEIPT, target_printer_id='p1')
        assert transport.entered['p1'].wait(2)

        pool.remove_printer('p1')
        handle.result(2)
        gate.set()

        # Give the stuck write a moment to finish
        deadline = time.monotonic() + 2
        while 'p1' not in transport.closed and time.monotonic() < deadline:
            time.sleep(0.01)
        assert 'p1' in transport.closed
        assert pool.get_printers() == []


class TestCancel:
    """Tests for cancelling queued jobs."""

    @pytest.fixture
    def single_worker(self, pool, transport):
        dispatcher = PrintDispatcher(
            pool,
            transports={printer_type: transport for printer_type in PrinterType},
            open_timeout=1,
            write_timeout=1,
            job_workers=1,
        )
        yield dispatcher
        for gate in transport.gates.values():
            gate.set()
        dispatcher.shutdown()

    def test_cancel_queued_job(self, pool, single_worker, transport):
        pool.add_printer(ethernet('p1'))
        gate = transport.block('p1')
        first = single_worker.submit_job_async(RECEIPT)
        assert transport.entered['p1'].wait(2)
        second = single_worker.submit_job_async(RECEIPT)

        assert second.cancel() is True
        gate.set()

        assert first.result(2).success
        result = second.result(2)
        assert isinstance(result, Failed)
        assert result.attempts == 0
        assert result.attempts_exhausted is False
        assert second.job.status == 'cancelled'
        assert len(transport.sent) == 1

    def test_cancel_after_dispatch_has_no_effect(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        gate = transport.block('p1')
        handle = dispatcher.submit_job_async(RECEIPT)
        assert transport.entered['p1'].wait(2)

        assert handle.cancel() is False
        gate.set()
        assert handle.result(2).success

    def test_cancel_finished_job(self, pool, dispatcher):
        pool.add_printer(ethernet('p1'))
        handle = dispatcher.submit_job_async(RECEIPT)
        handle.result(2)

        assert handle.cancel() is False
        assert handle.job.status == 'completed'


class TestRendering:
    """Tests for payloads rendered for the selected printer."""

    def test_renderer_gets_selected_printer(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1', print_width=384))
        seen = []

        def render(entry):
            seen.append((entry.id, entry.print_width))
            return b'rendered'

        result = dispatcher.submit_job(render)

        assert result.success
        assert seen == [('p1', 384)]
        assert transport.sent == [('p1', b'rendered')]

    def test_renderer_runs_per_attempt(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('wide', print_width=576))
        pool.add_printer(ethernet('narrow', print_width=384))
        transport.fail_write.add('wide')
        widths = []

        def render(entry):
            widths.append(entry.print_width)
            return bytes([entry.print_width // 8])

        result = dispatcher.submit_job(render)

        assert result.printer_id == 'narrow'
        assert widths == [576, 384]
        assert transport.sent == [('narrow', bytes([48]))]

    def test_render_error_restores_printer(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))

        def render(entry):
            raise ValueError('cannot identify image file')

        result = dispatcher.submit_job(render)

        assert isinstance(result, Failed)
        assert result.attempts_exhausted is False
        assert 'cannot identify image file' in result.reason
        assert pool.get_printer('p1').status is PrinterStatus.IDLE
        assert transport.opened == []

    def test_renderer_must_return_bytes(self, pool, dispatcher):
        pool.add_printer(ethernet('p1'))
        result = dispatcher.submit_job(lambda entry: 'text')
        assert isinstance(result, Failed)
        assert result.error_type == 'TypeError'


class TestJobValidation:
    """Tests for job arguments."""

    def test_zero_attempts_rejected(self, dispatcher):
        with pytest.raises(ValueError):
            dispatcher.submit_job(RECEIPT, max_attempts=0)

    def test_payload_type_checked(self, dispatcher):
        with pytest.raises(TypeError):
            dispatcher.submit_job('not bytes')

    def test_bytearray_accepted(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        assert dispatcher.submit_job(bytearray(RECEIPT)).success
        assert transport.sent == [('p1', RECEIPT)]


class TestEvents:
    """Tests for job events."""

    def test_one_terminal_event_per_job(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        pool.add_printer(ethernet('p2'))
        transport.fail_write.add('p1')
        events = []
        pool.add_listener(events.append)

        result = dispatcher.submit_job(RECEIPT)

        job_events = [e.type for e in events if e.job_id == result.job_id and e.type.startswith('job_')]
        assert job_events == ['job_queued', 'job_processing', 'job_retrying',
                              'job_processing', 'job_completed']

    def test_failed_job_event(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        transport.fail_open.add('p1')
        events = []
        pool.add_listener(events.append)

        dispatcher.submit_job(RECEIPT)

        failed = [e for e in events if e.type == 'job_failed']
        assert len(failed) == 1
        assert failed[0].data['attempts_exhausted'] is True
        assert not any(e.type == 'job_completed' for e in events)


class TestConvenienceOperations:
    """Tests for cash drawer, broadcast print and history."""

    def test_open_cash_drawer(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))

        result = dispatcher.open_cash_drawer('p1')

        assert result.success
        assert transport.sent == [('p1', CASH_DRAWER_KICK)]
        assert dispatcher.list_jobs()[0].source == 'drawer'

    def test_open_cash_drawer_single_attempt(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        pool.add_printer(ethernet('p2'))
        transport.fail_open.update({'p1', 'p2'})

        result = dispatcher.open_cash_drawer()

        assert result.attempts == 1
        assert len(transport.opened) == 1

    def test_print_to_all(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        pool.add_printer(ethernet('p2'))
        pool.add_printer(ethernet('p3', enabled=False))
        transport.fail_open.add('p2')

        summary = dispatcher.print_to_all(RECEIPT)

        assert summary['success'] is True
        by_id = {r['printer_id']: r for r in summary['results']}
        assert set(by_id) == {'p1', 'p2'}
        assert by_id['p1']['success'] is True
        assert by_id['p2']['success'] is False
        assert by_id['p2']['name'] == 'Printer p2'

    def test_print_to_all_without_printers(self, dispatcher):
        assert dispatcher.print_to_all(RECEIPT) == {'success': False, 'results': []}

    def test_list_jobs(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        pool.add_printer(ethernet('p2'))
        first = dispatcher.submit_job(RECEIPT, target_printer_id='p1')
        second = dispatcher.submit_job(RECEIPT, target_printer_id='p2')
        third = dispatcher.submit_job(RECEIPT, target_printer_id='p1')

        assert [j.id for j in dispatcher.list_jobs()] == [third.job_id, second.job_id, first.job_id]
        assert [j.id for j in dispatcher.list_jobs(printer_id='p1')] == [third.job_id, first.job_id]
        assert len(dispatcher.list_jobs(limit=1)) == 1

    def test_job_to_dict(self, pool, dispatcher):
        pool.add_printer(ethernet('p1'))
        dispatcher.submit_job(RECEIPT)

        data = dispatcher.list_jobs()[0].to_dict()

        assert data['status'] == 'completed'
        assert data['printer_id'] == 'p1'
        assert data['payload_size'] == len(RECEIPT)
        assert data['completed_at'] is not None


class TestConnectionTest:
    """Tests for test_printer."""

    def test_brings_offline_printer_back(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        transport.fail_open.add('p1')
        dispatcher.submit_job(RECEIPT)
        assert pool.get_printer('p1').status is PrinterStatus.OFFLINE
        transport.fail_open.clear()

        result = dispatcher.test_printer('p1')

        assert result['success'] is True
        assert result['status'] == 'idle'
        entry = pool.get_printer('p1')
        assert entry.status is PrinterStatus.IDLE
        assert entry.jobs_completed == 0
        assert entry.last_error is None
        assert transport.sent == []
        assert dispatcher.submit_job(RECEIPT).success

    def test_unreachable_printer_stays_offline(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        transport.fail_open.add('p1')

        result = dispatcher.test_printer('p1')

        assert result['success'] is False
        assert result['status'] == 'offline'
        assert transport.closed == []

    def test_disabled_printer_can_be_tested(self, pool, dispatcher):
        pool.add_printer(ethernet('p1', enabled=False))

        assert dispatcher.test_printer('p1')['success'] is True
        assert pool.get_printer('p1').enabled is False

    def test_busy_printer(self, pool, dispatcher, transport):
        pool.add_printer(ethernet('p1'))
        gate = transport.block('p1')
        handle = dispatcher.submit_job_async(RECEIPT)
        assert transport.entered['p1'].wait(2)

        result = dispatcher.test_printer('p1')

        assert result['success'] is False
        assert 'busy' in result['error']
        gate.set()
        assert handle.result(2).success

    def test_unknown_printer(self, dispatcher):
        assert dispatcher.test_printer('nope')['success'] is False


class TestTransportSelection:
    """Tests for the per-type transport registry."""

    def test_uses_transport_of_printer_type(self, pool, transport):
        pool.add_printer({'id': 'u1', 'name': 'USB', 'type': 'usb',
                          'vendor_id': '0x04b8', 'product_id': '0x0202'})
        other = threading.Event()

        class Unused:
            def send(self, *args):
                other.set()

        dispatcher = PrintDispatcher(pool, transports={
            PrinterType.ETHERNET: Unused(),
            PrinterType.BLUETOOTH: Unused(),
            PrinterType.USB: transport,
        })
        try:
            assert dispatcher.submit_job(RECEIPT).success
        finally:
            dispatcher.shutdown()

        assert transport.sent == [('u1', RECEIPT)]
        assert not other.is_set()
