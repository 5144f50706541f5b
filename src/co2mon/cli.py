"""Command line interface for the co2mon package."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer

from .device.config import MonitorConfig, load_config
from .device.frames import Measurement, MeasurementKind, decode_frame
from .device.keygen import as_key, generate_key, key_from_time
from .device.session import DeviceSession, MonitorLoop, read_snapshot
from .device.transport import TransportError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path("host_pi/config.json")

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help="Holtek/ZyAura USB CO2 monitor utilities.",
)


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level (DEBUG, INFO, ...)."),
) -> None:
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown log level '{log_level}'", param_hint="--log-level")
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _parse_hex(value: str, what: str) -> bytes:
    try:
        return bytes.fromhex(value.replace(":", " "))
    except ValueError as exc:
        raise typer.BadParameter(f"{what} '{value}' is not valid hex") from exc


def format_measurement(measurement: Measurement, temperature_unit: str = "C") -> str:
    kind = measurement.kind
    if kind is MeasurementKind.CO2:
        reading = f"{measurement.raw_value} ppm"
    elif kind is MeasurementKind.TEMPERATURE:
        if temperature_unit == "F":
            reading = f"{measurement.fahrenheit:.2f} °F"
        else:
            reading = f"{measurement.celsius:.2f} °C"
    elif kind is MeasurementKind.HUMIDITY:
        reading = f"{measurement.humidity:.2f} %RH"
    else:
        reading = f"raw={measurement.raw_value}"
    return f"{kind.name.lower()}(0x{measurement.tag:02X}): {reading}"


def _load(config_path: Path, path: Optional[str], override: Optional[List[str]]) -> MonitorConfig:
    overrides = list(override or [])
    if path:
        overrides.append(f"path={path}")
    source = config_path if config_path.exists() else None
    if source is None and config_path != DEFAULT_CONFIG:
        raise typer.BadParameter(f"Config file {config_path} not found", param_hint="--config")
    try:
        return load_config(source, overrides or None)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


@app.command()
def keygen(
    at: Optional[str] = typer.Option(None, "--at", help="Local ISO timestamp instead of the current time."),
) -> None:
    """Print the obfuscation key the vendor software would send."""

    if at is None:
        key = generate_key()
    else:
        try:
            moment = datetime.fromisoformat(at)
        except ValueError as exc:
            raise typer.BadParameter(f"Invalid timestamp '{at}'", param_hint="--at") from exc
        key = key_from_time(moment.timetuple())
    typer.echo(key.hex(" ").upper())


@app.command()
def decode(
    key_hex: str = typer.Option(..., "--key", "-k", help="8-byte key as hex."),
    frames: List[str] = typer.Argument(..., help="Captured 8-byte reports as hex."),
    allow_plaintext: bool = typer.Option(False, "--allow-plaintext", help="Accept frames sent in the clear."),
) -> None:
    """Decode captured raw reports offline."""

    try:
        key = as_key(_parse_hex(key_hex, "Key"))
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--key") from exc
    for item in frames:
        raw = _parse_hex(item, "Frame")
        try:
            measurement = decode_frame(key, raw, allow_plaintext=allow_plaintext)
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
        status = "ok" if measurement.valid else "INVALID"
        typer.echo(
            f"{raw.hex(' ').upper()} -> {format_measurement(measurement)} "
            f"checksum=0x{measurement.checksum:02X} {status}"
        )


@app.command()
def read(
    path: Optional[str] = typer.Option(None, "--path", "-p", help="HID device path (default: first monitor)."),
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to monitor config."),
    override: Optional[List[str]] = typer.Option(None, "--set", help="Override config keys, e.g. --set temperature_unit=F"),
    humidity: bool = typer.Option(False, "--humidity", help="Also wait for a humidity report."),
    max_frames: int = typer.Option(64, "--max-frames", help="Give up after this many reports."),
) -> None:
    """Print one CO2 / temperature (/ humidity) snapshot."""

    cfg = _load(config_path, path, override)
    try:
        with DeviceSession(cfg) as session:
            session.open()
            found = read_snapshot(session, include_humidity=humidity, max_frames=max_frames)
    except TransportError as exc:
        typer.echo(f"Device error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if not found:
        typer.echo("No valid reports received", err=True)
        raise typer.Exit(code=1)
    for kind in (MeasurementKind.CO2, MeasurementKind.TEMPERATURE, MeasurementKind.HUMIDITY):
        if kind in found:
            typer.echo(format_measurement(found[kind], cfg.temperature_unit))


@app.command()
def run(
    path: Optional[str] = typer.Option(None, "--path", "-p", help="HID device path (default: first monitor)."),
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to monitor config."),
    override: Optional[List[str]] = typer.Option(None, "--set", help="Override config keys, e.g. --set host.reconnect_max_sec=10"),
) -> None:
    """Stream measurements until interrupted, reconnecting on device errors."""

    cfg = _load(config_path, path, override)
    loop = MonitorLoop(cfg)
    loop.register_callback(
        lambda m: typer.echo(f"{datetime.now().isoformat(timespec='seconds')} {format_measurement(m, cfg.temperature_unit)}")
    )
    try:
        loop.run()
    except KeyboardInterrupt:
        logger.info("Stopping monitor (Ctrl+C)")
        loop.stop()


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
