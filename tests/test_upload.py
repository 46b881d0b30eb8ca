"""Tests for the upload sequence, pulses and progress reporting."""

from unittest.mock import MagicMock, call

import pytest

from serial_bootloader.config import BootloaderConfig
from serial_bootloader.firmware import build_frame
from serial_bootloader.protocol.transport import TransportError
from serial_bootloader.protocol.upload import (
    UploadError,
    UploadSequencer,
    UploadStage,
    format_eta,
    format_speed,
    reset_pulse,
    restart_pulse,
)


class Recorder:
    """Interleaves transport events and sleeps into one timeline."""

    def __init__(self, transport, clock):
        self.transport = transport
        self.clock = clock
        self.timeline = []
        original_write = transport.write

        def write(data):
            original_write(data)
            self.timeline.append(("write", len(data)))

        transport.write = write

    def sleep(self, seconds):
        self.clock.sleep(seconds)
        self.timeline.append(("sleep", seconds))


def _sequencer(transport, clock, **overrides):
    config = BootloaderConfig().with_overrides(**overrides)
    recorder = Recorder(transport, clock)
    return UploadSequencer(transport, config, sleep=recorder.sleep, clock=clock), recorder


def test_2500_byte_payload_sequence(fake_transport, clock):
    frame = build_frame(bytes(range(250)) * 10)
    sequencer, recorder = _sequencer(fake_transport, clock)

    report = sequencer.upload(frame)

    assert fake_transport.writes == [
        frame.magic,
        frame.size,
        frame.payload[:1024],
        frame.payload[1024:2048],
        frame.payload[2048:],
        frame.checksum,
    ]
    assert recorder.timeline == [
        ("write", 4),
        ("sleep", 0.01),
        ("write", 4),
        ("sleep", 0.01),
        ("write", 1024),
        ("write", 1024),
        ("write", 452),
        ("write", 4),
    ]
    assert report.bytes_sent == 2500
    assert report.chunks == 3
    assert report.crc == frame.crc


def test_progress_is_monotonic_and_reaches_100_at_last_chunk(fake_transport, clock):
    frame = build_frame(bytes(2500))
    sequencer, _ = _sequencer(fake_transport, clock)
    seen = []

    def on_progress(progress):
        seen.append((progress.percent, len(fake_transport.writes)))

    sequencer.upload(frame, progress_cb=on_progress)

    percents = [p for p, _ in seen]
    assert percents == sorted(percents)
    assert percents[0] == 0
    assert percents[-1] == 100
    # 100% only once all three payload chunks (after magic and size) are written
    assert [w for p, w in seen if p == 100] == [5]
    assert all(p < 100 for p, w in seen if w < 5)


def test_throughput_sampled_at_interval(fake_transport, ticking_clock):
    clock = ticking_clock
    frame = build_frame(bytes(4096))
    sequencer, _ = _sequencer(fake_transport, clock, throughput_interval=0.25)
    seen = []

    sequencer.upload(frame, progress_cb=seen.append)

    # start, then chunks at +0.1s, +0.2s (no sample yet), +0.3s (sample), +0.4s
    assert seen[1].remaining is None and seen[1].speed == 0
    assert seen[2].remaining is None
    assert seen[3].speed == pytest.approx(3072 / 0.3)
    assert seen[3].remaining == pytest.approx(1024 / (3072 / 0.3))
    assert seen[4].speed == seen[3].speed
    assert seen[4].remaining is not None


def test_reset_pulse_precedes_magic(fake_transport, clock):
    frame = build_frame(bytes(8))
    sequencer, recorder = _sequencer(
        fake_transport, clock, reset_down_time=0.1, reset_settle_time=0.2
    )
    stages = []

    sequencer.upload(frame, reset_before_upload=True, stage_cb=stages.append)

    assert fake_transport.events[:3] == [
        ("rts", True),
        ("rts", False),
        ("write", frame.magic),
    ]
    assert recorder.timeline[:3] == [("sleep", 0.1), ("sleep", 0.2), ("write", 4)]
    assert stages == [
        UploadStage.RESET,
        UploadStage.MAGIC,
        UploadStage.SIZE,
        UploadStage.PAYLOAD,
        UploadStage.CHECKSUM,
    ]


def test_no_reset_without_flag(fake_transport, clock):
    sequencer, _ = _sequencer(fake_transport, clock)
    sequencer.upload(build_frame(bytes(4)))
    assert all(kind == "write" for kind, _ in fake_transport.events)


@pytest.mark.parametrize(
    "fail_on_write,stage,bytes_sent",
    [
        (0, UploadStage.MAGIC, 0),
        (1, UploadStage.SIZE, 0),
        (3, UploadStage.PAYLOAD, 1024),
        (5, UploadStage.CHECKSUM, 2500),
    ],
)
def test_write_failure_aborts_at_stage(fake_transport, clock, fail_on_write, stage, bytes_sent):
    fake_transport.fail_on_write = fail_on_write
    sequencer, _ = _sequencer(fake_transport, clock)

    with pytest.raises(UploadError) as ei:
        sequencer.upload(build_frame(bytes(2500)))

    assert ei.value.stage == stage
    assert ei.value.bytes_sent == bytes_sent
    assert isinstance(ei.value, TransportError)
    # nothing is retried or written after the failure
    assert len(fake_transport.writes) == fail_on_write


def test_closed_transport_fails_at_magic(fake_transport, clock):
    fake_transport.close()
    sequencer, _ = _sequencer(fake_transport, clock)
    with pytest.raises(UploadError) as ei:
        sequencer.upload(build_frame(bytes(4)))
    assert ei.value.stage == UploadStage.MAGIC
    assert "magic" in str(ei.value)


def test_reset_line_failure_reports_reset_stage(fake_transport, clock):
    def broken(active):
        raise TransportError("Serial port not open")

    fake_transport.set_reset_line = broken
    sequencer, _ = _sequencer(fake_transport, clock)
    with pytest.raises(UploadError) as ei:
        sequencer.upload(build_frame(bytes(4)), reset_before_upload=True)
    assert ei.value.stage == UploadStage.RESET
    assert fake_transport.writes == []


def test_reset_pulse_releases_line(fake_transport, clock):
    reset_pulse(fake_transport, 0.1, 0.1, sleep=clock.sleep)
    assert fake_transport.events == [("rts", True), ("rts", False)]
    assert clock.sleeps == [0.1, 0.1]


def test_restart_pulse_uses_dtr_without_settle(fake_transport, clock):
    restart_pulse(fake_transport, 0.05, sleep=clock.sleep)
    assert fake_transport.events == [("dtr", True), ("dtr", False)]
    assert clock.sleeps == [0.05]


@pytest.mark.parametrize(
    "rate,text",
    [
        (0, "0 B/s"),
        (512.7, "512 B/s"),
        (1536, "1.50 KB/s"),
        (2 * 1024 * 1024 + 1, "2.00 MB/s"),
    ],
)
def test_format_speed(rate, text):
    assert format_speed(rate) == text


def test_format_eta():
    assert format_eta(3.2, 11.6) == "3s < 12 s"
    assert format_eta(0.0, None) == "N/A"


def test_sequencer_call_order_on_mock_transport():
    frame = build_frame(b"\x01\x00\x00\x00\x02\x00\x00\x00")
    mock_transport = MagicMock()

    UploadSequencer(mock_transport, sleep=lambda seconds: None).upload(
        frame, reset_before_upload=True
    )

    assert mock_transport.mock_calls == [
        call.set_reset_line(True),
        call.set_reset_line(False),
        call.write(frame.magic),
        call.write(frame.size),
        call.write(frame.payload),
        call.write(frame.checksum),
    ]


def test_chunks_finishing_in_one_clock_tick_skip_throughput_sample(fake_transport):
    config = BootloaderConfig(throughput_interval=0.001)
    updates = []

    report = UploadSequencer(
        fake_transport, config, sleep=lambda seconds: None, clock=lambda: 5.0
    ).upload(build_frame(bytes(2048)), progress_cb=updates.append)

    assert report.bytes_sent == 2048
    assert [u.speed for u in updates] == [0.0, 0.0, 0.0]
    assert updates[-1].remaining is None
    assert fake_transport.writes[-1] == build_frame(bytes(2048)).checksum
