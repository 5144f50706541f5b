from __future__ import annotations

import logging
import time

import pytest

from co2mon.device.config import HostRuntime, MonitorConfig
from co2mon.device.frames import MeasurementKind
from co2mon.device.session import DeviceSession, InitializationError, MonitorLoop, read_snapshot
from co2mon.device.transport import TransportError

from conftest import FIXED_KEY, FakeTransport, obfuscate, plain_frame


def _session(transport: FakeTransport, fixed_clock, **kwargs) -> DeviceSession:
    return DeviceSession(MonitorConfig(**kwargs), transport=transport, clock=fixed_clock)


def test_open_first_sends_key_report(fixed_clock) -> None:
    transport = FakeTransport()
    session = _session(transport, fixed_clock)
    session.open()
    assert transport.opened == "04D9:A052"
    assert transport.sent == [b"\x00" + FIXED_KEY]
    assert session.key == FIXED_KEY


def test_open_path_uses_configured_path(fixed_clock) -> None:
    transport = FakeTransport()
    session = _session(transport, fixed_clock, path="/dev/hidraw7")
    session.open()
    assert transport.opened == "/dev/hidraw7"


def test_raw_open_does_not_initialize(fixed_clock) -> None:
    transport = FakeTransport()
    session = _session(transport, fixed_clock)
    session.open_first(initialize=False)
    assert transport.sent == []
    assert session.key is None
    with pytest.raises(TransportError):
        transport.reports.append(b"\x00" * 8)
        session.read_measurement()


def test_short_init_write_aborts_and_closes(fixed_clock) -> None:
    transport = FakeTransport(written=8)
    session = _session(transport, fixed_clock)
    with pytest.raises(InitializationError):
        session.open_path("/dev/hidraw0")
    assert transport.closed == 1
    assert session.key is None


def test_failed_init_write_closes_handle(fixed_clock) -> None:
    class FailingTransport(FakeTransport):
        def send_feature_report(self, data: bytes) -> int:
            raise TransportError("boom")

    transport = FailingTransport()
    session = _session(transport, fixed_clock)
    with pytest.raises(TransportError):
        session.open()
    assert transport.closed == 1


def test_read_measurement_decodes_with_session_key(fixed_clock, encoded_reports) -> None:
    transport = FakeTransport(list(encoded_reports))
    with _session(transport, fixed_clock) as session:
        session.open()
        co2 = session.read_measurement()
        assert co2 is not None and co2.kind is MeasurementKind.CO2 and co2.valid
        assert session.read_decoded() == plain_frame(0x42, 4377)
        assert session.read_raw() == encoded_reports[2]
        assert session.read_measurement() is None
    assert transport.closed == 1


def test_short_read_raises(fixed_clock) -> None:
    transport = FakeTransport([b"\x01\x02\x03"])
    session = _session(transport, fixed_clock)
    session.open()
    with pytest.raises(TransportError):
        session.read_raw()


def test_sessions_keep_independent_keys(fixed_clock) -> None:
    other_clock = lambda: time.struct_time((2000, 1, 1, 0, 0, 0, 5, 1, -1))  # noqa: E731
    first = _session(FakeTransport(), fixed_clock)
    second = DeviceSession(MonitorConfig(), transport=FakeTransport(), clock=other_clock)
    first.open()
    second.open()
    assert first.key == FIXED_KEY
    assert second.key != first.key


def test_plaintext_reports_accepted_when_enabled(fixed_clock) -> None:
    transport = FakeTransport([plain_frame(0x50, 612)])
    session = _session(transport, fixed_clock, allow_plaintext=True)
    session.open()
    measurement = session.read_measurement()
    assert measurement is not None and measurement.valid
    assert measurement.raw_value == 612


def test_read_snapshot_collects_wanted_kinds(fixed_clock, encoded_reports) -> None:
    unknown = obfuscate(FIXED_KEY, plain_frame(0x6E, 1))
    corrupt = bytes(8)
    transport = FakeTransport([unknown, corrupt, *encoded_reports])
    session = _session(transport, fixed_clock)
    session.open()
    found = read_snapshot(session, include_humidity=True)
    assert set(found) == {MeasurementKind.CO2, MeasurementKind.TEMPERATURE, MeasurementKind.HUMIDITY}
    assert found[MeasurementKind.HUMIDITY].humidity == 45.0


def test_read_snapshot_gives_up_after_budget(fixed_clock) -> None:
    session = _session(FakeTransport(), fixed_clock)
    session.open()
    assert read_snapshot(session, max_frames=3) == {}


def test_monitor_loop_reconnects_after_transport_error(fixed_clock, encoded_reports) -> None:
    cfg = MonitorConfig(
        host=HostRuntime(reconnect_initial_sec=0.01, reconnect_max_sec=0.02, stats_log_interval=60.0)
    )
    attempts = []

    def factory(config: MonitorConfig) -> DeviceSession:
        attempts.append(config)
        if len(attempts) == 1:
            # one unknown report, then a short read drops the connection
            reports = [obfuscate(FIXED_KEY, plain_frame(0x6E, 1)), b"\x01"]
        else:
            reports = [bytes(8), *encoded_reports]
        return DeviceSession(config, transport=FakeTransport(reports), clock=fixed_clock)

    loop = MonitorLoop(cfg, session_factory=factory)
    received = []

    def on_measurement(measurement) -> None:
        received.append(measurement)
        if len(received) == 3:
            loop.stop()

    loop.register_callback(on_measurement)
    loop.run()

    assert len(attempts) == 2
    assert loop.last_exception is None
    assert [m.kind for m in received] == [
        MeasurementKind.CO2,
        MeasurementKind.TEMPERATURE,
        MeasurementKind.HUMIDITY,
    ]
    stats = loop.stats()
    assert stats["reconnects"] == 1
    assert stats["unknown"] == 1
    assert stats["invalid"] == 1
    assert stats["frames"] == 5


def test_monitor_loop_logs_final_stats_on_interrupt(fixed_clock, encoded_reports, caplog) -> None:
    def factory(config: MonitorConfig) -> DeviceSession:
        return DeviceSession(config, transport=FakeTransport(list(encoded_reports)), clock=fixed_clock)

    def interrupt(measurement) -> None:
        raise KeyboardInterrupt

    loop = MonitorLoop(MonitorConfig(), session_factory=factory)
    loop.register_callback(interrupt)
    with caplog.at_level(logging.INFO, logger="co2mon.device.session"):
        with pytest.raises(KeyboardInterrupt):
            loop.run()
    assert any(record.getMessage().startswith("Final stats: frames=1") for record in caplog.records)
