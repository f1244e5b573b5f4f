"""Camera stream abstractions."""
from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Iterable

import numpy as np

logger = logging.getLogger(__name__)

# User visible identifiers for camera backends. The order controls how they are
# presented to clients.
CAMERA_SOURCES: dict[str, str] = {
    "auto": "Automatic (OpenCV with synthetic fallback)",
    "opencv": "OpenCV (USB / V4L2 webcam)",
    "synthetic": "Synthetic test pattern",
}

# Default backend selection when no explicit configuration is provided.
DEFAULT_CAMERA_CHOICE = "auto"

_CAMERA_ALIASES = {
    "cv2": "opencv",
    "v4l2": "opencv",
    "webcam": "opencv",
}


class CameraError(RuntimeError):
    """Raised when a camera stream cannot be acquired or used."""


class PermissionDeniedError(CameraError):
    """Raised when the platform refuses access to the capture device."""


class NoDeviceError(CameraError):
    """Raised when no capture device is available."""


class StreamSwitchError(CameraError):
    """Raised when switching the active stream to another device fails."""


class BaseCamera(ABC):
    """Abstract live stream capable of producing RGB frames."""

    device_id: str = ""

    @abstractmethod
    async def get_frame(self) -> np.ndarray:  # pragma: no cover - interface only
        raise NotImplementedError

    async def close(self) -> None:  # pragma: no cover - optional override
        return None


def summarise_exception(exc: BaseException) -> str:
    """Collect the unique error messages from an exception chain."""

    details: list[str] = []
    seen: set[str] = set()
    to_consider: Iterable[BaseException | None] = (
        exc,
        getattr(exc, "__cause__", None),
        getattr(exc, "__context__", None),
    )
    for candidate in to_consider:
        if candidate is None:
            continue
        text = str(candidate).strip()
        if text and text not in seen:
            details.append(text)
            seen.add(text)
    return " | ".join(details)


class OpenCVCamera(BaseCamera):
    """Stream implementation using OpenCV VideoCapture."""

    def __init__(
        self,
        source: int | str = 0,
        resolution: tuple[int, int] | None = None,
        *,
        device_id: str | None = None,
    ) -> None:
        try:
            import cv2
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise CameraError("OpenCV is not installed") from exc

        self._cv2 = cv2
        self.device_id = device_id if device_id is not None else str(source)
        self._capture = cv2.VideoCapture(source)
        if not self._capture.isOpened():
            self._capture.release()
            raise NoDeviceError(f"Failed to open camera {source!r}")
        if resolution is not None:
            # The driver negotiates the closest supported mode; this is a hint.
            width, height = resolution
            self._capture.set(cv2.CAP_PROP_FRAME_WIDTH, float(width))
            self._capture.set(cv2.CAP_PROP_FRAME_HEIGHT, float(height))

    @property
    def negotiated_resolution(self) -> tuple[int, int]:
        width = int(self._capture.get(self._cv2.CAP_PROP_FRAME_WIDTH) or 0)
        height = int(self._capture.get(self._cv2.CAP_PROP_FRAME_HEIGHT) or 0)
        return (width, height)

    async def get_frame(self) -> np.ndarray:
        ret, frame = await asyncio.to_thread(self._capture.read)
        if not ret:
            raise CameraError("Failed to read frame from OpenCV camera")
        return self._cv2.cvtColor(frame, self._cv2.COLOR_BGR2RGB)

    async def close(self) -> None:
        await asyncio.to_thread(self._capture.release)


class SyntheticCamera(BaseCamera):
    """Generates synthetic frames for development and testing."""

    def __init__(
        self,
        width: int = 640,
        height: int = 480,
        *,
        resolution: tuple[int, int] | None = None,
        device_id: str = "synthetic",
    ) -> None:
        if resolution is not None:
            width, height = resolution
        self._width = int(width)
        self._height = int(height)
        self._start = time.perf_counter()
        self.device_id = device_id
        self.closed = False

    async def get_frame(self) -> np.ndarray:
        if self.closed:
            raise CameraError("Synthetic camera has been closed")
        elapsed = time.perf_counter() - self._start
        horizontal = np.linspace(0, 255, self._width, dtype=np.uint8)
        vertical = np.linspace(0, 255, self._height, dtype=np.uint8).reshape(-1, 1)
        red = np.tile(horizontal, (self._height, 1))
        green = np.roll(red, int(elapsed * 10), axis=1)
        blue = np.tile(vertical, (1, self._width))
        frame = np.stack([red, green, blue], axis=2)
        return frame.astype(np.uint8)

    async def close(self) -> None:
        self.closed = True


def normalise_camera_choice(choice: str | None) -> str:
    if choice is None or not choice.strip():
        return DEFAULT_CAMERA_CHOICE
    normalised = choice.strip().lower()
    return _CAMERA_ALIASES.get(normalised, normalised)


__all__ = [
    "CAMERA_SOURCES",
    "DEFAULT_CAMERA_CHOICE",
    "BaseCamera",
    "CameraError",
    "NoDeviceError",
    "OpenCVCamera",
    "PermissionDeniedError",
    "StreamSwitchError",
    "SyntheticCamera",
    "normalise_camera_choice",
    "summarise_exception",
]
