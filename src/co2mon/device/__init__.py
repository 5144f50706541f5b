"""
Protocol and session helpers for the Holtek/ZyAura USB CO2 monitor.

The key generator and frame codec are pure functions over 8-byte buffers;
`DeviceSession` pairs one HID handle with the key it was armed with and
`MonitorLoop` keeps a session streaming measurements across reconnects.
"""

from .config import HOLTEK_CO2_PID, HOLTEK_CO2_VID, HostRuntime, MonitorConfig, load_config
from .frames import (
    Measurement,
    MeasurementKind,
    decode_frame,
    decrypt,
    is_plaintext,
    parse,
    read_measurement,
    rotate_right_3,
    shuffle,
)
from .keygen import ObfuscationKey, as_key, generate_key, init_report, key_from_time
from .session import DeviceSession, InitializationError, MonitorLoop, read_snapshot
from .transport import DeviceDescriptor, HidTransport, TransportError, enumerate_devices

__all__ = [
    "HOLTEK_CO2_PID",
    "HOLTEK_CO2_VID",
    "HostRuntime",
    "MonitorConfig",
    "load_config",
    "Measurement",
    "MeasurementKind",
    "decode_frame",
    "decrypt",
    "is_plaintext",
    "parse",
    "read_measurement",
    "rotate_right_3",
    "shuffle",
    "ObfuscationKey",
    "as_key",
    "generate_key",
    "init_report",
    "key_from_time",
    "DeviceSession",
    "InitializationError",
    "MonitorLoop",
    "read_snapshot",
    "DeviceDescriptor",
    "HidTransport",
    "TransportError",
    "enumerate_devices",
]
