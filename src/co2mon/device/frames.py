from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Iterable, List, Union

from .. import units
from .keygen import ObfuscationKey, as_key

logger = logging.getLogger(__name__)

FRAME_LEN = 8
FRAME_TERMINATOR = 0x0D

SHUFFLE = (2, 4, 0, 7, 1, 6, 5, 3)
SALT = b"Htemp99e"


def _swap_nibbles(value: int) -> int:
    return ((value >> 4) | (value << 4)) & 0xFF


SALT_ROTATED = bytes(_swap_nibbles(b) for b in SALT)

RawFrame = Union[bytes, bytearray, List[int]]


class MeasurementKind(enum.Enum):
    CO2 = 0x50
    TEMPERATURE = 0x42
    HUMIDITY = 0x44
    UNKNOWN = None

    @classmethod
    def from_tag(cls, tag: int) -> "MeasurementKind":
        for kind in cls:
            if kind.value == tag:
                return kind
        return cls.UNKNOWN


@dataclass(frozen=True)
class Measurement:
    tag: int
    kind: MeasurementKind
    raw_value: int
    checksum: int
    valid: bool

    @property
    def celsius(self) -> float:
        return units.celsius(self.raw_value)

    @property
    def fahrenheit(self) -> float:
        return units.fahrenheit(self.raw_value)

    @property
    def humidity(self) -> float:
        return units.relative_humidity(self.raw_value)

    def value(self) -> float:
        """Value in the natural unit of the kind: ppm, °C or %RH."""
        if self.kind is MeasurementKind.TEMPERATURE:
            return self.celsius
        if self.kind is MeasurementKind.HUMIDITY:
            return self.humidity
        return float(self.raw_value)


def _as_frame(data: Iterable[int]) -> bytes:
    frame = bytes(data)
    if len(frame) != FRAME_LEN:
        raise ValueError(f"Frame must be {FRAME_LEN} bytes, got {len(frame)}")
    return frame


def shuffle(frame: RawFrame) -> bytes:
    """Input byte ``i`` moves to position ``SHUFFLE[i]``."""
    data = _as_frame(frame)
    out = bytearray(FRAME_LEN)
    for i, target in enumerate(SHUFFLE):
        out[target] = data[i]
    return bytes(out)


def rotate_right_3(block: RawFrame) -> bytes:
    """
    Rotate the 64-bit block right by three bits.

    Byte ``i`` keeps its upper five bits shifted down and borrows the low
    three bits of byte ``i - 1`` (wrapping to byte 7 for byte 0).
    """
    data = _as_frame(block)
    out = bytearray(FRAME_LEN)
    for i in range(FRAME_LEN):
        prev = data[(i - 1 + FRAME_LEN) % FRAME_LEN]
        out[i] = ((data[i] >> 3) | (prev << 5)) & 0xFF
    return bytes(out)


def decrypt(key: ObfuscationKey, frame: RawFrame) -> bytes:
    key = as_key(key)
    mixed = bytes(b ^ k for b, k in zip(shuffle(frame), key))
    rotated = rotate_right_3(mixed)
    return bytes((0x100 + r - s) & 0xFF for r, s in zip(rotated, SALT_ROTATED))


def checksum_ok(plain: bytes) -> bool:
    return plain[4] == FRAME_TERMINATOR and plain[3] == (plain[0] + plain[1] + plain[2]) & 0xFF


def parse(plaintext: RawFrame) -> Measurement:
    p = _as_frame(plaintext)
    tag = p[0]
    measurement = Measurement(
        tag=tag,
        kind=MeasurementKind.from_tag(tag),
        raw_value=(p[1] << 8) | p[2],
        checksum=p[3],
        valid=checksum_ok(p),
    )
    if not measurement.valid:
        logger.debug("Invalid frame %s", p.hex(" ").upper())
    return measurement


def read_measurement(key: ObfuscationKey, frame: RawFrame) -> Measurement:
    return parse(decrypt(key, frame))


def is_plaintext(frame: RawFrame) -> bool:
    """True when the frame already passes validation without deobfuscation."""
    return checksum_ok(_as_frame(frame))


def decode_frame(key: ObfuscationKey, frame: RawFrame, allow_plaintext: bool = False) -> Measurement:
    # Newer firmware revisions may ignore the key and send reports in the clear.
    if allow_plaintext and is_plaintext(frame):
        return parse(frame)
    return read_measurement(key, frame)
