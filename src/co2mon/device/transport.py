from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

try:
    import hid  # type: ignore[import]
except ImportError:  # pragma: no cover - handled when a device is opened
    hid = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """Device not found, open failure, short read or short write."""


@dataclass(frozen=True)
class DeviceDescriptor:
    path: str
    vendor_id: int
    product_id: int
    serial: str = ""
    product: str = ""
    manufacturer: str = ""


def _require_hid() -> Any:
    if hid is None:
        raise ImportError("hidapi is required but not installed. Install package 'hidapi'.")
    return hid


def _path_str(path: Any) -> str:
    return path.decode() if isinstance(path, bytes) else str(path)


def enumerate_devices(vendor_id: int, product_id: int) -> List[DeviceDescriptor]:
    devices = []
    seen = set()
    for item in _require_hid().enumerate(vendor_id, product_id):
        path = _path_str(item["path"])
        if path in seen:
            continue
        seen.add(path)
        devices.append(
            DeviceDescriptor(
                path=path,
                vendor_id=item["vendor_id"],
                product_id=item["product_id"],
                serial=item.get("serial_number") or "",
                product=item.get("product_string") or "",
                manufacturer=item.get("manufacturer_string") or "",
            )
        )
    return devices


class HidTransport:
    """Single HID handle with the enumerate/open/feature-report/read/close contract."""

    def __init__(self) -> None:
        self._dev: Optional[Any] = None
        self.path: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._dev is not None

    def open_path(self, path: str) -> None:
        self.close()
        dev = _require_hid().device()
        try:
            dev.open_path(path.encode() if isinstance(path, str) else path)
        except OSError as exc:
            raise TransportError(f"Unable to open HID device {path}: {exc}") from exc
        self._dev = dev
        self.path = _path_str(path)
        logger.debug("Opened HID device %s", self.path)

    def open_first(self, vendor_id: int, product_id: int) -> None:
        self.close()
        dev = _require_hid().device()
        try:
            dev.open(vendor_id, product_id)
        except OSError as exc:
            raise TransportError(
                f"No HID device {vendor_id:04X}:{product_id:04X} could be opened: {exc}"
            ) from exc
        self._dev = dev
        self.path = f"{vendor_id:04X}:{product_id:04X}"
        logger.debug("Opened first HID device %s", self.path)

    def send_feature_report(self, data: bytes) -> int:
        dev = self._handle()
        try:
            written = dev.send_feature_report(list(data))
        except (OSError, ValueError) as exc:
            raise TransportError(f"Feature report failed: {exc}") from exc
        return int(written)

    def read(self, length: int, timeout_ms: int = 0) -> bytes:
        dev = self._handle()
        try:
            data = dev.read(length, timeout_ms)
        except (OSError, ValueError) as exc:
            raise TransportError(f"Read failed: {exc}") from exc
        return bytes(data or b"")

    def close(self) -> None:
        if self._dev is None:
            return
        try:
            self._dev.close()
        finally:
            self._dev = None
            logger.debug("Closed HID device %s", self.path)

    def _handle(self) -> Any:
        if self._dev is None:
            raise TransportError("device not open")
        return self._dev
