"""Recording session state machine."""
from __future__ import annotations

import logging
from enum import Enum

from .catalog import GroupEntry

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"


def normalise_group_name(name: object) -> str:
    """Return the trimmed group name, raising ``ValueError`` when blank."""

    if not isinstance(name, str) or not name.strip():
        raise ValueError("Group name must be a non-empty string")
    return name.strip()


class RecordingSession:
    """Collects unique detections under a group name while recording."""

    def __init__(self) -> None:
        self._group_name: str | None = None
        # dict keys keep first-seen order with set semantics
        self._collected: dict[str, None] = {}

    @property
    def state(self) -> SessionState:
        return SessionState.RECORDING if self._group_name is not None else SessionState.IDLE

    @property
    def active(self) -> bool:
        return self._group_name is not None

    @property
    def group_name(self) -> str | None:
        return self._group_name

    @property
    def collected(self) -> tuple[str, ...]:
        return tuple(self._collected)

    def begin(self, group_name: str) -> None:
        """Start recording into *group_name*.

        Calling ``begin`` while already recording restarts the session and
        discards anything collected so far.
        """

        name = normalise_group_name(group_name)
        if self._group_name is not None and self._collected:
            logger.info(
                "Restarting recording; discarding %d uncommitted code(s) from %r",
                len(self._collected),
                self._group_name,
            )
        self._group_name = name
        self._collected = {}

    def on_detection(self, value: str) -> None:
        if self._group_name is None or not value:
            return
        self._collected.setdefault(value, None)

    def end(self) -> GroupEntry | None:
        """Finish the session, returning the entry to commit or ``None``."""

        group_name = self._group_name
        barcodes = tuple(self._collected)
        self._group_name = None
        self._collected = {}
        if group_name is None or not barcodes:
            return None
        return GroupEntry(group=group_name, barcodes=barcodes)

    def snapshot(self) -> dict[str, object]:
        return {
            "state": self.state.value,
            "group": self._group_name,
            "collected": list(self._collected),
        }


__all__ = ["RecordingSession", "SessionState", "normalise_group_name"]
