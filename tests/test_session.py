"""Tests for the session: terminal history, uploads and connection loss."""

import pytest

from serial_bootloader.config import BootloaderConfig
from serial_bootloader.core.messages import MessageDirection, TerminalLog, TerminalMessage
from serial_bootloader.core.session import BootloaderSession
from serial_bootloader.protocol.transport import TransportError, TransportNotOpen
from serial_bootloader.reassembler import Severity


@pytest.fixture
def session(factory, timers, clock):
    s = BootloaderSession(
        "COM7",
        BootloaderConfig(baudrate=57600),
        transport_factory=factory,
        timer_factory=timers,
        sleep=clock.sleep,
    )
    s.connect()
    return s


def _contents(session, direction=None):
    return [
        e.content for e in session.history.entries()
        if direction is None or e.direction == direction
    ]


def test_connect_opens_transport_with_config(session, factory):
    transport = factory.created[0]
    assert transport.is_open
    assert transport.port == "COM7"
    assert transport.baudrate == 57600
    assert session.is_connected
    assert _contents(session) == ["--- CONNECTED TO COM7 ---"]


def test_connect_twice_is_noop(session, factory):
    session.connect()
    assert len(factory.created) == 1


def test_received_messages_become_rx_entries(session, factory):
    seen = []
    session.add_listener(seen.append)

    factory.created[0].feed(b"[I]boot ok\r\nhalf[E]fault\n")

    rx = [e for e in session.history.entries() if e.direction == MessageDirection.RX]
    assert [e.content for e in rx] == ["[I]boot ok", "half", "[E]fault"]
    assert [e.severity for e in rx] == [Severity.INFO, Severity.DEFAULT, Severity.ERROR]
    assert [e.content for e in seen] == ["[I]boot ok", "half", "[E]fault"]


def test_blank_lines_are_recorded_as_empty_entries(session, factory):
    factory.created[0].feed(b"\n\r\n  \n")
    assert _contents(session, MessageDirection.RX) == ["", "", ""]


def test_send_line_appends_newline_and_records_tx(session, factory):
    session.send_line("status")
    assert factory.created[0].writes == [b"status\n"]
    assert _contents(session, MessageDirection.TX) == ["status"]


def test_send_line_requires_connection(factory, timers):
    session = BootloaderSession("COM7", transport_factory=factory, timer_factory=timers)
    with pytest.raises(TransportNotOpen):
        session.send_line("x")


def test_restart_pulses_dtr(session, factory, clock):
    session.restart()
    assert factory.created[0].events == [("dtr", True), ("dtr", False)]
    assert clock.sleeps == [0.1]


def test_upload_success(session, factory, hex_file):
    path = hex_file(["01020304", "05060708"])

    result = session.upload(path, reset_before_upload=True)

    assert result.ok
    assert result.payload_size == 8
    assert result.bytes_sent == 8
    assert result.chunks == 1
    assert result.stage == "checksum"
    assert result.crc_hex.startswith("0x")
    assert "8/8 bytes sent (100%)" in result.to_summary()
    transport = factory.created[0]
    assert transport.events[:2] == [("rts", True), ("rts", False)]
    assert transport.writes[0] == b"\xde\xad\xbe\xef"
    info = _contents(session, MessageDirection.INFO)
    assert "Preparing to upload 'app.hex' (8 bytes)" in info
    assert info[-1] == "--- UPLOAD COMPLETE ---"
    assert any(line.startswith("Calculated CRC32: 0x") for line in info)


def test_upload_bad_source_reports_load_stage(session, factory, hex_file):
    result = session.upload(hex_file(["zz"]))
    assert not result.ok
    assert result.stage == "load"
    assert factory.created[0].writes == []


def test_upload_write_failure_reports_stage(session, factory, hex_file):
    factory.created[0].fail_on_write = 2
    result = session.upload(hex_file(["00000000"] * 600))
    assert not result.ok
    assert result.stage == "payload"
    assert result.bytes_sent == 0
    assert result.payload_size == 2400
    assert result.crc is not None
    assert "Stopped at: payload" in result.to_summary()
    assert _contents(session, MessageDirection.INFO)[-1].startswith("--- UPLOAD FAILED:")


def test_upload_when_disconnected_fails(factory, timers, hex_file):
    session = BootloaderSession("COM7", transport_factory=factory, timer_factory=timers)
    result = session.upload(hex_file(["00000001"]))
    assert not result.ok
    assert "Not connected" in result.errors[0]
    assert result.stage == "connect"


def test_connection_lost_discards_fragment_and_fails_next_write(session, factory, hex_file, timers):
    transport = factory.created[0]
    transport.feed(b"unterminated")
    transport.drop()

    assert not session.is_connected
    assert session.reassembler.pending_size == 0
    assert _contents(session, MessageDirection.INFO)[-1] == "--- CONNECTION LOST ---"
    timers.fire_live()
    assert _contents(session, MessageDirection.RX) == []

    with pytest.raises(TransportError):
        session.send_line("hello")


def test_connection_lost_during_upload_aborts(factory, timers, clock, hex_file):
    session = BootloaderSession(
        "COM7", transport_factory=factory, timer_factory=timers, sleep=clock.sleep
    )
    session.connect()
    transport = factory.created[0]

    def on_stage(stage):
        if stage.value == "size":
            transport.drop()

    result = session.upload(hex_file(["00000001"]), stage_cb=on_stage)

    assert not result.ok
    assert result.stage == "size"
    assert transport.writes == [b"\xde\xad\xbe\xef"]


def test_disconnect_closes_and_records(session, factory):
    session.disconnect()
    session.disconnect()
    assert not factory.created[0].is_open
    assert _contents(session).count("--- DISCONNECTED ---") == 1


def test_terminal_log_is_bounded():
    log = TerminalLog(limit=3)
    for i in range(5):
        log.add(MessageDirection.RX, f"line {i}")
    assert [e.content for e in log.entries()] == ["line 2", "line 3", "line 4"]
    assert len(log) == 3
    with pytest.raises(ValueError):
        TerminalLog(limit=0)


def test_formatted_header():
    from datetime import datetime

    entry = TerminalMessage(
        MessageDirection.RX, "hi", timestamp=datetime(2024, 1, 2, 13, 4, 5, 250000)
    )
    assert entry.formatted_header == "[13:04:05.250] RX >"
    assert str(entry) == "[13:04:05.250] RX > hi"
