from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from .config import MonitorConfig
from .frames import FRAME_LEN, Measurement, MeasurementKind, decode_frame, decrypt
from .keygen import INIT_REPORT_LEN, ObfuscationKey, generate_key, init_report
from .transport import HidTransport, TransportError

logger = logging.getLogger(__name__)


class InitializationError(TransportError):
    """The key feature report was not fully written to the device."""


class DeviceSession:
    """
    One open monitor handle together with the key it was armed with.

    The device obfuscates every report with the key it last received, so the
    key lives here rather than in module state and each session owns its own.
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        transport: Optional[HidTransport] = None,
        clock: Callable[[], time.struct_time] = time.localtime,
    ):
        self.config = config or MonitorConfig()
        self.transport = transport if transport is not None else HidTransport()
        self._clock = clock
        self.key: Optional[ObfuscationKey] = None
        self.armed_at: Optional[float] = None

    def __enter__(self) -> "DeviceSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def open(self, initialize: bool = True) -> None:
        if self.config.path:
            self.open_path(self.config.path, initialize=initialize)
        else:
            self.open_first(initialize=initialize)

    def open_path(self, path: str, initialize: bool = True) -> None:
        self.transport.open_path(path)
        logger.info("Opened CO2 monitor at %s", path)
        if initialize:
            self._initialize()

    def open_first(self, initialize: bool = True) -> None:
        self.transport.open_first(self.config.vendor_id, self.config.product_id)
        logger.info(
            "Opened first CO2 monitor %04X:%04X", self.config.vendor_id, self.config.product_id
        )
        if initialize:
            self._initialize()

    def _initialize(self) -> None:
        try:
            written = self.send_init_packet()
        except TransportError:
            self.close()
            raise
        if written != INIT_REPORT_LEN:
            self.close()
            raise InitializationError(
                f"Init report wrote {written} bytes, expected {INIT_REPORT_LEN}"
            )

    def send_init_packet(self) -> int:
        """Generate a fresh key and send it. Returns the byte count reported by the device."""
        key = generate_key(self._clock)
        written = self.transport.send_feature_report(init_report(key))
        if written == INIT_REPORT_LEN:
            self.key = key
            self.armed_at = time.monotonic()
            logger.debug("Device armed with key %s", key.hex(" ").upper())
        else:
            logger.warning("Init report short write (%d of %d bytes)", written, INIT_REPORT_LEN)
        return written

    def rekey_pending(self) -> bool:
        """True while the device may still be sending frames under the previous key."""
        if self.armed_at is None:
            return False
        return (time.monotonic() - self.armed_at) < self.config.host.rekey_wait_sec

    def read_raw(self) -> Optional[bytes]:
        data = self.transport.read(FRAME_LEN, self.config.read_timeout_ms)
        if not data:
            return None
        if len(data) != FRAME_LEN:
            raise TransportError(f"Short read ({len(data)} of {FRAME_LEN} bytes)")
        return data

    def read_decoded(self) -> Optional[bytes]:
        frame = self.read_raw()
        if frame is None:
            return None
        return decrypt(self._require_key(), frame)

    def read_measurement(self) -> Optional[Measurement]:
        frame = self.read_raw()
        if frame is None:
            return None
        return decode_frame(self._require_key(), frame, allow_plaintext=self.config.allow_plaintext)

    def close(self) -> None:
        if self.transport.is_open:
            self.transport.close()
            logger.info("Closed CO2 monitor")
        self.key = None
        self.armed_at = None

    def _require_key(self) -> ObfuscationKey:
        if self.key is None:
            raise TransportError("Session has no key; send the init packet first")
        return self.key


def read_snapshot(
    session: DeviceSession,
    include_humidity: bool = False,
    max_frames: int = 64,
) -> Dict[MeasurementKind, Measurement]:
    """Read until CO2 and temperature (and optionally humidity) have been seen."""
    wanted = {MeasurementKind.CO2, MeasurementKind.TEMPERATURE}
    if include_humidity:
        wanted.add(MeasurementKind.HUMIDITY)
    found: Dict[MeasurementKind, Measurement] = {}
    for _ in range(max_frames):
        measurement = session.read_measurement()
        if measurement is None or not measurement.valid:
            continue
        if measurement.kind in wanted:
            found[measurement.kind] = measurement
        if wanted.issubset(found):
            break
    missing = wanted.difference(found)
    if missing:
        logger.warning(
            "Snapshot incomplete after %d frames, missing %s",
            max_frames,
            ", ".join(sorted(kind.name for kind in missing)),
        )
    return found


class MonitorLoop:
    """Keeps a session open and streams valid measurements to callbacks."""

    def __init__(
        self,
        config: MonitorConfig,
        session_factory: Optional[Callable[[MonitorConfig], DeviceSession]] = None,
    ) -> None:
        self.config = config
        self._session_factory = session_factory or DeviceSession
        self._callbacks: List[Callable[[Measurement], None]] = []
        self._stop_event = threading.Event()
        self._session: Optional[DeviceSession] = None
        self._stats: Dict[str, int] = {"frames": 0, "invalid": 0, "unknown": 0, "reconnects": 0}
        self._connected_once = False
        self.last_exception: Optional[Exception] = None

    def register_callback(self, callback: Callable[[Measurement], None]) -> None:
        self._callbacks.append(callback)

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        try:
            self._serve()
        finally:
            self._log_stats(final=True)

    def _serve(self) -> None:
        initial_delay = max(self.config.host.reconnect_initial_sec, 0.01)
        max_delay = max(self.config.host.reconnect_max_sec, initial_delay)
        interval_sec = max(self.config.host.stats_log_interval, 1.0)
        backoff = initial_delay
        next_log = time.monotonic() + interval_sec
        while not self._stop_event.is_set():
            try:
                self._session = self._session_factory(self.config)
                self._session.open()
                if self._connected_once:
                    self._stats["reconnects"] += 1
                    logger.info("Reconnected to CO2 monitor")
                self._connected_once = True
                self.last_exception = None
                backoff = initial_delay
                while not self._stop_event.is_set():
                    measurement = self._session.read_measurement()
                    if measurement is not None:
                        self._handle(measurement)
                    if time.monotonic() >= next_log:
                        self._log_stats()
                        next_log = time.monotonic() + interval_sec
            except TransportError as exc:
                self.last_exception = exc
                logger.warning("Transport error: %s", exc)
            finally:
                if self._session is not None:
                    self._session.close()
                    self._session = None
            if self._stop_event.is_set():
                break
            wait_time = min(backoff, max_delay)
            logger.info("Reconnecting in %.1fs", wait_time)
            self._stop_event.wait(wait_time)
            backoff = min(backoff * 2, max_delay)

    def _handle(self, measurement: Measurement) -> None:
        self._stats["frames"] += 1
        if not measurement.valid:
            self._stats["invalid"] += 1
            if self._session is not None and self._session.rekey_pending():
                logger.debug("Invalid frame while device switches key")
            else:
                logger.warning("Invalid frame (tag=0x%02X checksum=0x%02X)", measurement.tag, measurement.checksum)
            return
        if measurement.kind is MeasurementKind.UNKNOWN:
            self._stats["unknown"] += 1
            logger.debug("Unknown tag 0x%02X value=%d", measurement.tag, measurement.raw_value)
            return
        for callback in self._callbacks:
            callback(measurement)

    def _log_stats(self, final: bool = False) -> None:
        logger.info(
            "%sframes=%d invalid=%d unknown=%d reconnects=%d",
            "Final stats: " if final else "",
            self._stats["frames"],
            self._stats["invalid"],
            self._stats["unknown"],
            self._stats["reconnects"],
        )
