"""Shared fixtures: in-memory transports and a wired pool/dispatcher."""

import threading

import pytest

from printer_pool.dispatcher import PrintDispatcher
from printer_pool.exceptions import PrinterConnectionError, TransmissionError
from printer_pool.models import PrinterType
from printer_pool.pool import PrinterPool
from printer_pool.transports import Transport, Connection


class FakeTransport(Transport):
    """Transport that records traffic and fails on demand per printer id."""

    def __init__(self):
        self.fail_open = set()
        self.fail_write = set()
        self.gates = {}
        self.entered = {}
        self.opened = []
        self.closed = []
        self.sent = []
        self._lock = threading.Lock()

    def block(self, printer_id):
        """Make writes to ``printer_id`` wait until the returned event is set."""
        gate = threading.Event()
        self.gates[printer_id] = gate
        self.entered[printer_id] = threading.Event()
        return gate

    def open(self, config, timeout):
        with self._lock:
            self.opened.append(config.id)
        if config.id in self.fail_open:
            raise PrinterConnectionError(f'Connection refused by {config.id}')
        return Connection(printer_id=config.id, endpoint=config.transport.describe())

    def write(self, connection, data, timeout):
        printer_id = connection.printer_id
        if printer_id in self.gates:
            self.entered[printer_id].set()
            self.gates[printer_id].wait(5)
        if printer_id in self.fail_write:
            raise TransmissionError(f'Broken pipe on {printer_id}')
        with self._lock:
            self.sent.append((printer_id, data))
        return len(data)

    def close(self, connection):
        with self._lock:
            self.closed.append(connection.printer_id)


def ethernet(printer_id, ip='192.168.1.100', **extra):
    config = {'id': printer_id, 'name': f'Printer {printer_id}', 'type': 'ethernet', 'ip': ip}
    config.update(extra)
    return config


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def pool():
    pool = PrinterPool()
    yield pool
    pool.close()


@pytest.fixture
def dispatcher(pool, transport):
    dispatcher = PrintDispatcher(
        pool,
        transports={printer_type: transport for printer_type in PrinterType},
        open_timeout=1,
        write_timeout=1,
    )
    yield dispatcher
    for gate in transport.gates.values():
        gate.set()
    dispatcher.shutdown()
