"""Capture device enumeration and default-device heuristics."""
from __future__ import annotations

import asyncio
import logging
import os
import re
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Sequence

from .camera import (
    BaseCamera,
    CameraError,
    NoDeviceError,
    OpenCVCamera,
    PermissionDeniedError,
    SyntheticCamera,
    normalise_camera_choice,
)

logger = logging.getLogger(__name__)

V4L2_DEVICE_ROOT = Path("/dev")
V4L2_SYSFS_ROOT = Path("/sys/class/video4linux")

# Labels are matched after NFKC normalisation and case folding, so translated
# and full-width variants of the same word classify identically.
_BACK_LABEL_PATTERN = re.compile(
    r"back|rear|environment|world|"
    r"arri[eè]re|trasera|traseira|posterior|posteriore|r[uü]ck|hinten|achter|"
    r"задн|후면|후방|背面|后置|後置|リア",
)
_FRONT_LABEL_PATTERN = re.compile(
    r"front|user|selfie|facetime|"
    r"avant|frontal|frontale|vorder|voor|"
    r"фронт|передн|전면|前置|正面|フロント",
)


class Facing(str, Enum):
    FRONT = "front"
    BACK = "back"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class CaptureDevice:
    """A capture device as reported by the platform at enumeration time."""

    id: str
    label: str
    facing: Facing = Facing.UNKNOWN

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "label": self.label, "facing": self.facing.value}


@dataclass(frozen=True, slots=True)
class StreamRequest:
    """Constraints used when acquiring a stream from a backend."""

    device_id: str | None = None
    facing: Facing | None = None
    resolution: tuple[int, int] | None = None


def _normalise_label(label: str) -> str:
    return unicodedata.normalize("NFKC", label or "").casefold()


def classify_facing(label: str) -> Facing:
    """Return the facing suggested by a device label."""

    text = _normalise_label(label)
    if not text:
        return Facing.UNKNOWN
    if _BACK_LABEL_PATTERN.search(text):
        return Facing.BACK
    if _FRONT_LABEL_PATTERN.search(text):
        return Facing.FRONT
    return Facing.UNKNOWN


def is_handheld(devices: Sequence[CaptureDevice]) -> bool:
    """Guess whether the host is a handheld device from its camera set.

    Handheld platforms label their cameras by facing; desktop webcams rarely do.
    """

    return any(device.facing is not Facing.UNKNOWN for device in devices)


class CameraBackend(ABC):
    """Platform primitives for device enumeration and stream acquisition."""

    name: str = "unknown"

    @abstractmethod
    def enumerate_devices(self) -> list[CaptureDevice]:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    def open_stream(self, request: StreamRequest) -> BaseCamera:  # pragma: no cover - interface only
        raise NotImplementedError


def _read_sysfs(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError:
        return ""


def _extract_index(identifier: str) -> int | None:
    match = re.search(r"(\d+)$", identifier)
    if match is None:
        return None
    return int(match.group(1))


class OpenCVBackend(CameraBackend):
    """Enumerates V4L2 nodes and opens them through OpenCV."""

    name = "opencv"

    def __init__(
        self,
        *,
        device_root: Path = V4L2_DEVICE_ROOT,
        sysfs_root: Path = V4L2_SYSFS_ROOT,
        max_probe_index: int = 4,
    ) -> None:
        self._device_root = device_root
        self._sysfs_root = sysfs_root
        self._max_probe_index = max_probe_index

    def enumerate_devices(self) -> list[CaptureDevice]:
        devices = self._enumerate_v4l2()
        if devices:
            return devices
        return self._enumerate_by_probe()

    def _enumerate_v4l2(self) -> list[CaptureDevice]:
        devices: list[CaptureDevice] = []
        if not self._device_root.exists():
            return devices
        for entry in sorted(
            self._device_root.glob("video*"),
            key=lambda path: _extract_index(path.name) or 0,
        ):
            if not entry.is_char_device():
                continue
            sysfs = self._sysfs_root / entry.name
            # Metadata nodes share a name with the capture node but report a
            # non-zero index.
            if _read_sysfs(sysfs / "index") not in ("", "0"):
                continue
            label = _read_sysfs(sysfs / "name") or entry.name
            devices.append(
                CaptureDevice(id=str(entry), label=label, facing=classify_facing(label))
            )
        return devices

    def _enumerate_by_probe(self) -> list[CaptureDevice]:
        try:
            import cv2
        except ImportError:  # pragma: no cover - optional dependency
            logger.debug("OpenCV unavailable; no devices can be probed")
            return []
        devices: list[CaptureDevice] = []
        for index in range(self._max_probe_index):
            capture = cv2.VideoCapture(index)
            try:
                if capture.isOpened():
                    label = f"Camera {index}"
                    devices.append(CaptureDevice(id=str(index), label=label))
            finally:
                capture.release()
        return devices

    def open_stream(self, request: StreamRequest) -> BaseCamera:
        device_id = request.device_id
        if device_id is None:
            if request.facing is not None:
                # V4L2 exposes no facing information to match against.
                raise NoDeviceError(
                    f"OpenCV cannot select a {request.facing.value}-facing camera"
                )
            devices = self.enumerate_devices()
            if not devices:
                raise NoDeviceError("No capture devices found")
            device_id = devices[0].id
        path = Path(device_id)
        if path.is_absolute():
            if not path.exists():
                raise NoDeviceError(f"Capture device {device_id} not found")
            if not os.access(path, os.R_OK | os.W_OK):
                raise PermissionDeniedError(f"Permission denied opening {device_id}")
            index = _extract_index(path.name)
            source: int | str = index if index is not None else device_id
        else:
            index = _extract_index(device_id)
            if index is None:
                raise NoDeviceError(f"Unknown capture device {device_id!r}")
            source = index
        return OpenCVCamera(source, request.resolution, device_id=device_id)


class SyntheticBackend(CameraBackend):
    """Single test-pattern device for development without hardware."""

    name = "synthetic"

    def __init__(self, label: str = "Synthetic test pattern") -> None:
        self._device = CaptureDevice(id="synthetic", label=label, facing=Facing.UNKNOWN)

    def enumerate_devices(self) -> list[CaptureDevice]:
        return [self._device]

    def open_stream(self, request: StreamRequest) -> BaseCamera:
        if request.device_id not in (None, self._device.id):
            raise NoDeviceError(f"Unknown capture device {request.device_id!r}")
        return SyntheticCamera(resolution=request.resolution, device_id=self._device.id)


def create_backend(choice: str | None = None) -> CameraBackend:
    """Create the camera backend specified by *choice* or the environment.

    ``"auto"`` uses OpenCV when it reports at least one device and falls back
    to the synthetic backend otherwise.
    """

    if choice is None:
        choice = os.getenv("BARCODE_CAMERA")
    resolved = normalise_camera_choice(choice)
    if resolved == "synthetic":
        return SyntheticBackend()
    if resolved == "opencv":
        return OpenCVBackend()
    if resolved == "auto":
        backend = OpenCVBackend()
        try:
            devices = backend.enumerate_devices()
        except Exception:
            logger.exception("OpenCV device enumeration failed during auto selection")
            devices = []
        if devices:
            return backend
        logger.error("No OpenCV capture devices found; using synthetic camera")
        return SyntheticBackend()
    raise CameraError(f"Unknown camera choice: {choice}")


class DeviceDirectory:
    """Lists capture devices and picks the default one to scan with."""

    def __init__(self, backend: CameraBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> CameraBackend:
        return self._backend

    async def list_devices(self) -> list[CaptureDevice]:
        devices = await asyncio.to_thread(self._backend.enumerate_devices)
        if not devices:
            raise NoDeviceError("No capture devices found")
        return list(devices)

    async def select_default(
        self,
        devices: Sequence[CaptureDevice],
        *,
        resolution: tuple[int, int] | None = None,
    ) -> CaptureDevice:
        """Return the back-facing device, or the first device if none is found.

        Labels are checked first. Platforms frequently leave labels empty, so
        a short-lived stream constrained to the environment-facing camera is
        then acquired and its device id mapped back into *devices*.
        """

        if not devices:
            raise NoDeviceError("No capture devices found")
        for device in devices:
            if device.facing is Facing.BACK:
                logger.debug("Selected back-facing device by label: %s", device.label)
                return device
        probed = await self._probe_environment(devices, resolution)
        if probed is not None:
            logger.debug("Selected back-facing device by probe: %s", probed.label)
            return probed
        return devices[0]

    async def _probe_environment(
        self,
        devices: Sequence[CaptureDevice],
        resolution: tuple[int, int] | None,
    ) -> CaptureDevice | None:
        request = StreamRequest(facing=Facing.BACK, resolution=resolution)
        try:
            probe = await asyncio.to_thread(self._backend.open_stream, request)
        except CameraError as exc:
            logger.debug("Environment-facing probe failed: %s", exc)
            return None
        try:
            return next((device for device in devices if device.id == probe.device_id), None)
        finally:
            try:
                await probe.close()
            except Exception as exc:  # pragma: no cover - best effort cleanup
                logger.warning("Failed to release probe stream: %s", exc)


__all__ = [
    "CameraBackend",
    "CaptureDevice",
    "DeviceDirectory",
    "Facing",
    "OpenCVBackend",
    "StreamRequest",
    "SyntheticBackend",
    "classify_facing",
    "create_backend",
    "is_handheld",
]
