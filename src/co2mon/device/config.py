from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

HOLTEK_CO2_VID = 0x04D9
HOLTEK_CO2_PID = 0xA052

TEMPERATURE_UNITS = {"C", "F"}


@dataclass
class HostRuntime:
    reconnect_initial_sec: float = 0.5
    reconnect_max_sec: float = 5.0
    stats_log_interval: float = 60.0
    rekey_wait_sec: float = 2.0


@dataclass
class MonitorConfig:
    vendor_id: int = HOLTEK_CO2_VID
    product_id: int = HOLTEK_CO2_PID
    path: Optional[str] = None
    read_timeout_ms: int = 5000
    allow_plaintext: bool = False
    temperature_unit: str = "C"
    host: HostRuntime = field(default_factory=HostRuntime)

    @property
    def temperature_unit_enum(self) -> str:
        unit = self.temperature_unit.upper()
        if unit not in TEMPERATURE_UNITS:
            raise ValueError(f"Unsupported temperature_unit '{self.temperature_unit}'")
        return unit


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def _as_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        coerced = _coerce_value(value.strip())
        if not isinstance(coerced, bool):
            raise ValueError(f"Expected true or false, got '{value}'")
        return coerced
    return bool(value)


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> MonitorConfig:
    """
    Load monitor configuration from JSON and apply CLI-style overrides.

    Overrides are dotted `key=value` pairs, e.g.:
        ["path=/dev/hidraw1", "host.reconnect_max_sec=10"]
    Without a path only the overrides are applied on top of the defaults.
    """
    data: Dict[str, Any] = _load_json(Path(path)) if path is not None else {}
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)
    host_data = merged.get("host") or {}
    cfg = MonitorConfig(
        vendor_id=_as_int(merged.get("vendor_id", HOLTEK_CO2_VID)),
        product_id=_as_int(merged.get("product_id", HOLTEK_CO2_PID)),
        path=str(merged["path"]) if merged.get("path") else None,
        read_timeout_ms=int(merged.get("read_timeout_ms", 5000)),
        allow_plaintext=_as_bool(merged.get("allow_plaintext", False)),
        temperature_unit=str(merged.get("temperature_unit", "C")),
        host=HostRuntime(
            reconnect_initial_sec=float(host_data.get("reconnect_initial_sec", 0.5)),
            reconnect_max_sec=float(host_data.get("reconnect_max_sec", 5.0)),
            stats_log_interval=float(host_data.get("stats_log_interval", 60.0)),
            rekey_wait_sec=float(host_data.get("rekey_wait_sec", 2.0)),
        ),
    )
    cfg.temperature_unit = cfg.temperature_unit_enum
    return cfg


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ValueError("Override key may not be empty")
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    if raw.lower().startswith("0x"):
        return raw
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if raw.startswith("[") and raw.endswith("]"):
        return json.loads(raw)
    if raw.startswith("{") and raw.endswith("}"):
        return json.loads(raw)
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
