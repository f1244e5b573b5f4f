"""Configuration management for BarcodeRecorder."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Mapping

from .camera import CAMERA_SOURCES, DEFAULT_CAMERA_CHOICE
from .export import DEFAULT_EXPORT_PREFIX, DEFAULT_HEADER

FORM_FACTORS: dict[str, str] = {
    "auto": "Detect from camera labels",
    "handheld": "Handheld (preview not mirrored)",
    "desktop": "Desktop (preview mirrored)",
}
DEFAULT_FORM_FACTOR = "auto"

SCAN_INTERVAL_RANGE = (0.2, 0.5)
DEDUP_WINDOW_MAX = 10.0


@dataclass(frozen=True, slots=True)
class Resolution:
    """Ideal capture resolution; the camera may negotiate a smaller one."""

    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError("Resolution dimensions must be positive integers")

    def as_tuple(self) -> tuple[int, int]:
        return (int(self.width), int(self.height))

    def key(self) -> str:
        return f"{self.width}x{self.height}"


RESOLUTION_PRESETS: dict[str, Resolution] = {
    "640x480": Resolution(640, 480),
    "1280x720": Resolution(1280, 720),
    "1920x1080": Resolution(1920, 1080),
}
DEFAULT_RESOLUTION_KEY = "1280x720"
DEFAULT_RESOLUTION = RESOLUTION_PRESETS[DEFAULT_RESOLUTION_KEY]


@dataclass(frozen=True, slots=True)
class ScanSettings:
    """Decode cadence and duplicate suppression window, in seconds."""

    interval_seconds: float = 0.5
    dedup_window_seconds: float = 1.0

    def __post_init__(self) -> None:
        try:
            interval = float(self.interval_seconds)
            window = float(self.dedup_window_seconds)
        except (TypeError, ValueError) as exc:
            raise ValueError("Scan settings must be numeric") from exc
        low, high = SCAN_INTERVAL_RANGE
        if not (low <= interval <= high):
            raise ValueError(f"Scan interval must be between {low:g} and {high:g} seconds")
        if not (0.0 <= window <= DEDUP_WINDOW_MAX):
            raise ValueError(
                f"Duplicate window must be between 0 and {DEDUP_WINDOW_MAX:g} seconds"
            )
        object.__setattr__(self, "interval_seconds", interval)
        object.__setattr__(self, "dedup_window_seconds", window)

    def to_dict(self) -> Dict[str, float]:
        return {
            "interval_seconds": self.interval_seconds,
            "dedup_window_seconds": self.dedup_window_seconds,
        }


@dataclass(frozen=True, slots=True)
class ExportSettings:
    """File naming, column labels and the optional save directory."""

    prefix: str = DEFAULT_EXPORT_PREFIX
    header: tuple[str, str] = DEFAULT_HEADER
    directory: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.prefix, str) or not self.prefix.strip():
            raise ValueError("Export prefix must be a non-empty string")
        header = tuple(self.header)
        if len(header) != 2 or not all(isinstance(label, str) and label.strip() for label in header):
            raise ValueError("Export header must contain two non-empty labels")
        directory = self.directory
        if directory is not None:
            if not isinstance(directory, str):
                raise ValueError("Export directory must be a string")
            directory = directory.strip() or None
        object.__setattr__(self, "prefix", self.prefix.strip())
        object.__setattr__(self, "header", (header[0].strip(), header[1].strip()))
        object.__setattr__(self, "directory", directory)

    def to_dict(self) -> dict[str, object]:
        return {"prefix": self.prefix, "header": list(self.header), "directory": self.directory}


DEFAULT_SCAN_SETTINGS = ScanSettings()
DEFAULT_EXPORT_SETTINGS = ExportSettings()


def _parse_camera(value: Any, *, default: str) -> str:
    if value is None:
        return default
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Camera selection must be a non-empty string")
    normalised = value.strip().lower()
    if normalised not in CAMERA_SOURCES:
        raise ValueError(f"Unknown camera selection: {value}")
    return normalised


def _parse_resolution(value: Any, *, default: Resolution) -> Resolution:
    if value is None:
        return default
    if isinstance(value, Resolution):
        return value
    if isinstance(value, str):
        text = value.strip().lower().replace("×", "x")
        if text in RESOLUTION_PRESETS:
            return RESOLUTION_PRESETS[text]
        parts = text.split("x")
        if len(parts) != 2:
            raise ValueError(f"Invalid resolution: {value}")
        try:
            return Resolution(int(parts[0]), int(parts[1]))
        except ValueError as exc:
            raise ValueError(f"Invalid resolution: {value}") from exc
    if isinstance(value, Mapping):
        try:
            return Resolution(int(value["width"]), int(value["height"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError("Resolution must define numeric width and height") from exc
    raise ValueError("Resolution must be a string or mapping")


def _parse_scan_settings(value: Any, *, default: ScanSettings) -> ScanSettings:
    if value is None:
        return default
    if isinstance(value, ScanSettings):
        return value
    if not isinstance(value, Mapping):
        raise ValueError("Scan settings must be a mapping")
    return ScanSettings(
        interval_seconds=value.get("interval_seconds", default.interval_seconds),
        dedup_window_seconds=value.get("dedup_window_seconds", default.dedup_window_seconds),
    )


def _parse_form_factor(value: Any, *, default: str) -> str:
    if value is None:
        return default
    if not isinstance(value, str) or value.strip().lower() not in FORM_FACTORS:
        raise ValueError(f"Unknown form factor: {value}")
    return value.strip().lower()


def _parse_export_settings(value: Any, *, default: ExportSettings) -> ExportSettings:
    if value is None:
        return default
    if isinstance(value, ExportSettings):
        return value
    if not isinstance(value, Mapping):
        raise ValueError("Export settings must be a mapping")
    header = value.get("header", default.header)
    if not isinstance(header, (list, tuple)):
        raise ValueError("Export header must be a list of two labels")
    return ExportSettings(
        prefix=value.get("prefix", default.prefix),
        header=tuple(header),
        directory=value.get("directory", default.directory),
    )


class ConfigManager:
    """Stores configuration state on disk with thread-safety."""

    def __init__(self, config_path: Path) -> None:
        self._path = Path(config_path)
        self._lock = Lock()
        self._ensure_parent()
        (
            self._camera,
            self._resolution,
            self._scan_settings,
            self._form_factor,
            self._export_settings,
        ) = self._load()

    def _ensure_parent(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> tuple[str, Resolution, ScanSettings, str, ExportSettings]:
        if not self._path.exists():
            return (
                DEFAULT_CAMERA_CHOICE,
                DEFAULT_RESOLUTION,
                DEFAULT_SCAN_SETTINGS,
                DEFAULT_FORM_FACTOR,
                DEFAULT_EXPORT_SETTINGS,
            )
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError("Configuration file must contain a JSON object")
            return (
                _parse_camera(payload.get("camera"), default=DEFAULT_CAMERA_CHOICE),
                _parse_resolution(payload.get("resolution"), default=DEFAULT_RESOLUTION),
                _parse_scan_settings(payload.get("scan"), default=DEFAULT_SCAN_SETTINGS),
                _parse_form_factor(payload.get("form_factor"), default=DEFAULT_FORM_FACTOR),
                _parse_export_settings(payload.get("export"), default=DEFAULT_EXPORT_SETTINGS),
            )
        except (OSError, ValueError) as exc:
            raise RuntimeError(f"Failed to load configuration: {exc}") from exc

    def _save(self) -> None:
        payload: Dict[str, Any] = {
            "camera": self._camera,
            "resolution": {"width": self._resolution.width, "height": self._resolution.height},
            "scan": self._scan_settings.to_dict(),
            "form_factor": self._form_factor,
            "export": self._export_settings.to_dict(),
        }
        self._path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    def get_camera(self) -> str:
        with self._lock:
            return self._camera

    def set_camera(self, camera: str) -> str:
        normalised = _parse_camera(camera if camera is not None else "", default=DEFAULT_CAMERA_CHOICE)
        with self._lock:
            self._camera = normalised
            self._save()
        return normalised

    def get_resolution(self) -> Resolution:
        with self._lock:
            return self._resolution

    def set_resolution(self, value: Any) -> Resolution:
        resolution = _parse_resolution(value, default=self._resolution)
        with self._lock:
            self._resolution = resolution
            self._save()
        return resolution

    def get_scan_settings(self) -> ScanSettings:
        with self._lock:
            return self._scan_settings

    def set_scan_settings(self, data: Mapping[str, Any] | ScanSettings) -> ScanSettings:
        settings = _parse_scan_settings(data, default=self._scan_settings)
        with self._lock:
            self._scan_settings = settings
            self._save()
        return settings

    def get_form_factor(self) -> str:
        with self._lock:
            return self._form_factor

    def set_form_factor(self, value: str) -> str:
        form_factor = _parse_form_factor(value, default=self._form_factor)
        with self._lock:
            self._form_factor = form_factor
            self._save()
        return form_factor

    def get_export_settings(self) -> ExportSettings:
        with self._lock:
            return self._export_settings

    def set_export_settings(self, data: Mapping[str, Any] | ExportSettings) -> ExportSettings:
        settings = _parse_export_settings(data, default=self._export_settings)
        with self._lock:
            self._export_settings = settings
            self._save()
        return settings


__all__ = [
    "ConfigManager",
    "DEFAULT_EXPORT_SETTINGS",
    "DEFAULT_FORM_FACTOR",
    "DEFAULT_RESOLUTION",
    "DEFAULT_RESOLUTION_KEY",
    "DEFAULT_SCAN_SETTINGS",
    "ExportSettings",
    "FORM_FACTORS",
    "RESOLUTION_PRESETS",
    "Resolution",
    "ScanSettings",
]
