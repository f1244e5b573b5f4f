"""Frame decoding strategies and the scan loop that drives them."""
from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Sequence

import numpy as np

from .scheduler import AsyncTickScheduler, TickScheduler

logger = logging.getLogger(__name__)

DEFAULT_SCAN_INTERVAL = 0.5
DEFAULT_DEDUP_WINDOW = 1.0

FrameSource = Callable[[], Awaitable[Optional[np.ndarray]]]
DetectionListener = Callable[["Detection"], None]


class DecodeAttemptFailure(Exception):
    """A single strategy could not produce a value for a raster."""


@dataclass(frozen=True, slots=True)
class Detection:
    """One decoded value observed at one instant."""

    value: str
    timestamp: float

    def to_dict(self) -> dict[str, object]:
        return {"value": self.value, "timestamp": self.timestamp}


@dataclass(slots=True)
class DedupState:
    """Remembers the last accepted value to suppress rapid repeats."""

    last_value: str | None = None
    last_time: float = 0.0

    def accepts(self, value: str, now: float, window: float) -> bool:
        if value != self.last_value:
            return True
        return (now - self.last_time) > window

    def record(self, value: str, now: float) -> None:
        self.last_value = value
        self.last_time = now


def to_grayscale(raster: np.ndarray) -> np.ndarray:
    """Return a contiguous single channel uint8 view of an RGB raster."""

    array = np.asarray(raster)
    if array.ndim == 3:
        if array.shape[2] == 1:
            array = array[:, :, 0]
        else:
            rgb = array[:, :, :3].astype(np.float32)
            array = rgb @ np.array([0.299, 0.587, 0.114], dtype=np.float32)
    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)
    return np.ascontiguousarray(array)


def _first_pyzbar_text(image: np.ndarray) -> str | None:
    try:
        from pyzbar.pyzbar import decode
    except ImportError as exc:  # pragma: no cover - zbar shared library missing
        raise DecodeAttemptFailure("pyzbar is not available") from exc

    for symbol in decode(image):
        text = symbol.data.decode("utf-8", errors="replace")
        if text:
            return text
    return None


class DecodeStrategy(ABC):
    """Maps a raster to a decoded value, or ``None`` when no code is found."""

    name: str = "strategy"

    @abstractmethod
    def try_decode(self, raster: np.ndarray) -> str | None:  # pragma: no cover - interface only
        raise NotImplementedError


class PyzbarStrategy(DecodeStrategy):
    """Decodes the raw pixel buffer with zbar."""

    name = "pyzbar"

    def try_decode(self, raster: np.ndarray) -> str | None:
        return _first_pyzbar_text(to_grayscale(raster))


class EncodedImageStrategy(DecodeStrategy):
    """Re-encodes the raster as PNG, binarises it and decodes again.

    Slower than :class:`PyzbarStrategy` but recovers low contrast codes.
    """

    name = "encoded-image"

    def try_decode(self, raster: np.ndarray) -> str | None:
        import cv2

        ok, encoded = cv2.imencode(".png", to_grayscale(raster))
        if not ok:
            raise DecodeAttemptFailure("PNG encoding failed")
        image = cv2.imdecode(encoded, cv2.IMREAD_GRAYSCALE)
        if image is None:
            raise DecodeAttemptFailure("PNG decoding failed")
        _, binary = cv2.threshold(image, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        return _first_pyzbar_text(binary)


class OpenCVQRStrategy(DecodeStrategy):
    """Falls back to the OpenCV QR code detector."""

    name = "opencv-qr"

    def __init__(self) -> None:
        self._detector = None

    def try_decode(self, raster: np.ndarray) -> str | None:
        import cv2

        if self._detector is None:
            self._detector = cv2.QRCodeDetector()
        text, _points, _ = self._detector.detectAndDecode(to_grayscale(raster))
        return text or None


def default_strategies() -> list[DecodeStrategy]:
    return [PyzbarStrategy(), EncodedImageStrategy(), OpenCVQRStrategy()]


class DecodeOrchestrator:
    """Samples frames on a cadence, decodes them and emits deduplicated detections."""

    def __init__(
        self,
        frame_source: FrameSource,
        strategies: Sequence[DecodeStrategy] | None = None,
        *,
        interval: float = DEFAULT_SCAN_INTERVAL,
        dedup_window: float = DEFAULT_DEDUP_WINDOW,
        clock: Callable[[], float] = time.monotonic,
        scheduler: TickScheduler | None = None,
    ) -> None:
        if dedup_window < 0:
            raise ValueError("dedup_window must not be negative")
        self._frame_source = frame_source
        self._strategies: List[DecodeStrategy] = (
            list(strategies) if strategies is not None else default_strategies()
        )
        self._dedup_window = float(dedup_window)
        self._clock = clock
        self._dedup = DedupState()
        self._listeners: list[DetectionListener] = []
        self._busy = False
        self._scheduler = scheduler or AsyncTickScheduler(
            self._scheduled_tick, interval, name="barcode-decode-loop"
        )

    @property
    def strategies(self) -> list[DecodeStrategy]:
        return list(self._strategies)

    @property
    def dedup_state(self) -> DedupState:
        return self._dedup

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def paused(self) -> bool:
        return self._scheduler.paused

    @property
    def dedup_window(self) -> float:
        return self._dedup_window

    def apply_settings(
        self, *, interval: float | None = None, dedup_window: float | None = None
    ) -> None:
        if dedup_window is not None:
            if dedup_window < 0:
                raise ValueError("dedup_window must not be negative")
            self._dedup_window = float(dedup_window)
        if interval is not None:
            self._scheduler.set_interval(interval)

    def add_listener(self, listener: DetectionListener) -> None:
        self._listeners.append(listener)

    async def start(self) -> None:
        await self._scheduler.start()

    async def stop(self) -> None:
        await self._scheduler.stop()

    def pause(self) -> None:
        self._scheduler.pause()

    def resume(self) -> None:
        self._scheduler.resume()

    @asynccontextmanager
    async def paused_scanning(self) -> AsyncIterator[None]:
        """Suspend ticks for the duration of the block, restoring the prior state."""

        was_paused = self._scheduler.paused
        self._scheduler.pause()
        try:
            yield
        finally:
            if not was_paused:
                self._scheduler.resume()

    async def _scheduled_tick(self) -> None:
        await self.tick()

    async def tick(self) -> Detection | None:
        """Run one decode attempt and return the accepted detection, if any."""

        if self._busy:
            return None
        self._busy = True
        try:
            raster = await self._capture_raster()
            if raster is None:
                return None
            value = await self._decode(raster)
            if value is None:
                return None
            return self._accept(value)
        finally:
            self._busy = False

    async def _capture_raster(self) -> np.ndarray | None:
        try:
            frame = await self._frame_source()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Failed to read frame for decoding: %s", exc)
            return None
        if frame is None:
            return None
        array = np.asarray(frame)
        if array.ndim < 2 or array.shape[0] == 0 or array.shape[1] == 0:
            return None
        return np.array(array, dtype=np.uint8, copy=True, order="C")

    async def _decode(self, raster: np.ndarray) -> str | None:
        for strategy in self._strategies:
            try:
                value = await asyncio.to_thread(strategy.try_decode, raster)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.debug("Decode strategy %s failed: %s", strategy.name, exc)
                continue
            if value:
                return value
        return None

    def _accept(self, value: str) -> Detection | None:
        now = self._clock()
        if not self._dedup.accepts(value, now, self._dedup_window):
            return None
        self._dedup.record(value, now)
        detection = Detection(value=value, timestamp=now)
        for listener in list(self._listeners):
            try:
                listener(detection)
            except Exception:
                logger.exception("Detection listener failed")
        return detection


__all__ = [
    "DEFAULT_DEDUP_WINDOW",
    "DEFAULT_SCAN_INTERVAL",
    "DecodeAttemptFailure",
    "DecodeOrchestrator",
    "DecodeStrategy",
    "DedupState",
    "Detection",
    "EncodedImageStrategy",
    "OpenCVQRStrategy",
    "PyzbarStrategy",
    "default_strategies",
    "to_grayscale",
]
