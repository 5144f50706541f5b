from __future__ import annotations

import time
from typing import List, Optional

import pytest

from co2mon.device.frames import SALT_ROTATED, SHUFFLE

FIXED_TIME = time.struct_time((2024, 3, 15, 10, 30, 45, 4, 75, -1))
FIXED_KEY = bytes.fromhex("BBD3BB2477D177E8")


def obfuscate(key: bytes, plain: bytes) -> bytes:
    """Inverse of the device obfuscation, used only to build test reports."""
    rotated = [(p + s) & 0xFF for p, s in zip(plain, SALT_ROTATED)]
    mixed = [((rotated[i] << 3) & 0xFF) | (rotated[(i + 1) % 8] >> 5) for i in range(8)]
    shuffled = [m ^ k for m, k in zip(mixed, key)]
    return bytes(shuffled[target] for target in SHUFFLE)


def plain_frame(tag: int, value: int) -> bytes:
    hi, lo = (value >> 8) & 0xFF, value & 0xFF
    return bytes([tag, hi, lo, (tag + hi + lo) & 0xFF, 0x0D, 0, 0, 0])


class FakeTransport:
    def __init__(self, reports: Optional[List[bytes]] = None, written: int = 9):
        self.reports = list(reports or [])
        self.written = written
        self.sent: List[bytes] = []
        self.opened: Optional[str] = None
        self.closed = 0
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open_path(self, path: str) -> None:
        self.opened = path
        self._open = True

    def open_first(self, vendor_id: int, product_id: int) -> None:
        self.opened = f"{vendor_id:04X}:{product_id:04X}"
        self._open = True

    def send_feature_report(self, data: bytes) -> int:
        self.sent.append(bytes(data))
        return self.written

    def read(self, length: int, timeout_ms: int = 0) -> bytes:
        if self.reports:
            return self.reports.pop(0)
        return b""

    def close(self) -> None:
        self.closed += 1
        self._open = False


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_TIME


@pytest.fixture
def encoded_reports():
    """Obfuscated CO2, temperature and humidity reports under FIXED_KEY."""
    return [
        obfuscate(FIXED_KEY, plain_frame(0x50, 1000)),
        obfuscate(FIXED_KEY, plain_frame(0x42, 4377)),
        obfuscate(FIXED_KEY, plain_frame(0x44, 4500)),
    ]
