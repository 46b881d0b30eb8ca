"""Shared fakes for transport and timer driven tests."""

import pytest

from serial_bootloader.protocol.transport import TransportError, TransportNotOpen


class FakeTransport:
    """In-memory transport that records writes and control-line changes."""

    def __init__(
        self,
        port="FAKE",
        baudrate=115200,
        on_data=None,
        on_error=None,
        fail_on_write=None,
        fail_open=False,
    ):
        self.port = port
        self.baudrate = baudrate
        self.on_data = on_data
        self.on_error = on_error
        self.fail_on_write = fail_on_write
        self.fail_open = fail_open
        self.events = []
        self.is_open = False
        self.open_calls = 0

    def open(self):
        self.open_calls += 1
        if self.fail_open:
            raise TransportError(f"Cannot open port {self.port}: access denied")
        self.is_open = True

    def close(self):
        self.is_open = False

    def write(self, data):
        if not self.is_open:
            raise TransportNotOpen("Serial port not open")
        if self.fail_on_write is not None and len(self.writes) == self.fail_on_write:
            raise TransportError("Write error: device unplugged")
        self.events.append(("write", bytes(data)))

    def set_reset_line(self, active):
        self.events.append(("rts", active))

    def set_restart_line(self, active):
        self.events.append(("dtr", active))

    @property
    def writes(self):
        return [data for kind, data in self.events if kind == "write"]

    # Device side helpers
    def feed(self, data):
        self.on_data(data)

    def drop(self, exc=None):
        self.is_open = False
        self.on_error(exc or OSError("device reports readiness to read but returned no data"))


class ManualTimer:
    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args, **self.kwargs)


class ManualTimerFactory:
    """threading.Timer replacement whose timers only fire when told to."""

    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = ManualTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    @property
    def live(self):
        return [t for t in self.timers if t.started and not t.cancelled]

    def fire_live(self):
        for timer in self.live:
            timer.fire()


class FakeClock:
    """Monotonic clock that advances only through sleep() or tick()."""

    def __init__(self, start=100.0, per_call=0.0):
        self.now = start
        self.per_call = per_call
        self.sleeps = []

    def __call__(self):
        self.now += self.per_call
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_transport():
    transport = FakeTransport()
    transport.open()
    return transport


@pytest.fixture
def timers():
    return ManualTimerFactory()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hex_file(tmp_path):
    def _write(lines, name="app.hex"):
        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n", encoding="ascii")
        return path
    return _write


@pytest.fixture
def ticking_clock():
    """Clock that advances 100 ms on every read."""
    return FakeClock(per_call=0.1)


class TransportFactory:
    """Stands in for the SerialTransport class; remembers what it built."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.created = []

    def __call__(self, port, baudrate, on_data, on_error):
        transport = FakeTransport(port, baudrate, on_data, on_error, **self.kwargs)
        self.created.append(transport)
        return transport


@pytest.fixture
def factory():
    return TransportFactory()


@pytest.fixture
def failing_factory():
    """Transport factory whose transports refuse to open."""
    return TransportFactory(fail_open=True)
