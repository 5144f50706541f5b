"""Conversions from raw sensor values to physical units."""
from __future__ import annotations


def celsius(value: int) -> float:
    return value / 16.0 - 273.15


def fahrenheit(value: int) -> float:
    return celsius(value) * 1.8 + 32


def relative_humidity(value: int) -> float:
    return value / 100.0
