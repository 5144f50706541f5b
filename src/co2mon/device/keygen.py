from __future__ import annotations

import logging
import time
from typing import Callable, Iterable

logger = logging.getLogger(__name__)

KEY_LEN = 8
INIT_REPORT_LEN = KEY_LEN + 1

ObfuscationKey = bytes


def as_key(value: Iterable[int]) -> ObfuscationKey:
    key = bytes(value)
    if len(key) != KEY_LEN:
        raise ValueError(f"Obfuscation key must be {KEY_LEN} bytes, got {len(key)}")
    return key


def key_from_time(tm: time.struct_time) -> ObfuscationKey:
    """
    Derive the obfuscation key for a local-time tuple.

    Reproduces the key schedule of the vendor's ZG software. The first pass
    mixes the C-style time fields (0-based month, years since 1900) into
    seven bytes plus a seed; the second pass rewrites all eight bytes as XOR
    combinations in a fixed order where later steps consume already-mixed
    values. Every intermediate is truncated to 8 bits.
    """
    day = tm.tm_mday
    sec = tm.tm_sec
    hour = tm.tm_hour
    minute = tm.tm_min
    year1900 = tm.tm_year - 1900
    month0 = tm.tm_mon - 1

    b0 = (day + sec + 66) & 0xFF
    b1 = ((((year1900 + 1900) & 0xFFFF) >> 8) - 104) & 0xFF
    b2 = (hour + minute + 90) & 0xFF
    b3 = (8 * sec - 34) & 0xFF
    b4 = (minute - 60) & 0xFF
    b5 = (year1900 + 108) & 0xFF
    b6 = (4 * (sec + 51)) & 0xFF
    b7 = ((month0 + 1) + sec - 95) & 0xFF
    key = [b0, b1, b2, b3, b4, b5, b6, b7]

    t = b7
    key[0] = t ^ key[5] ^ key[2]
    t = key[2] ^ key[6] ^ t
    key[1] = t
    key[2] = key[5] ^ key[6] ^ t
    t = key[6] ^ key[3]
    t = key[4] ^ t
    key[3] = t
    mixed = key[5] ^ t ^ key[0]
    key[5] = key[2] ^ key[0] ^ key[7]
    key[4] = mixed
    key[6] = mixed
    key[7] = mixed ^ key[0] ^ key[3]
    return bytes(key)


def generate_key(clock: Callable[[], time.struct_time] = time.localtime) -> ObfuscationKey:
    key = key_from_time(clock())
    logger.debug("Generated obfuscation key %s", key.hex(" ").upper())
    return key


def init_report(key: ObfuscationKey) -> bytes:
    """Feature report arming the device: report id 0x00 followed by the key."""
    return b"\x00" + as_key(key)
