"""CSV rendering and delivery through the available export channels."""
from __future__ import annotations

import asyncio
import csv
import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Sequence

logger = logging.getLogger(__name__)

BOM = "\ufeff"
DEFAULT_EXPORT_PREFIX = "BARCODE_EXPORT"
DEFAULT_HEADER: tuple[str, str] = ("barcode", "group")
CSV_MEDIA_TYPE = "text/csv;charset=utf-8"

TableRow = tuple[str, str]


class ExportOutcome(str, Enum):
    SAVED = "saved"
    SHARED = "shared"
    DOWNLOADED = "downloaded"
    CANCELLED = "cancelled"
    NOTHING_TO_EXPORT = "nothing_to_export"


class ExportCancelled(Exception):
    """The user dismissed a save or share flow."""


class ExportChannelFailure(RuntimeError):
    """A channel could not deliver the document."""


@dataclass(frozen=True, slots=True)
class ExportDocument:
    filename: str
    text: str
    media_type: str = CSV_MEDIA_TYPE

    @property
    def payload(self) -> bytes:
        return self.text.encode("utf-8")


@dataclass(frozen=True, slots=True)
class ExportResult:
    outcome: ExportOutcome
    channel: str | None = None
    filename: str | None = None
    location: str | None = None
    failures: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "outcome": self.outcome.value,
            "channel": self.channel,
            "filename": self.filename,
            "location": self.location,
            "failures": list(self.failures),
        }


def render_csv(rows: Iterable[TableRow], header: Sequence[str] = DEFAULT_HEADER) -> str:
    """Render *rows* as BOM-prefixed CSV with every data field quoted."""

    buffer = io.StringIO()
    buffer.write(BOM)
    csv.writer(buffer, lineterminator="\n").writerow(list(header))
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for barcode, group in rows:
        writer.writerow([barcode, group])
    return buffer.getvalue()


def parse_csv(text: str) -> list[TableRow]:
    """Parse text produced by :func:`render_csv` back into table rows."""

    if text.startswith(BOM):
        text = text[len(BOM):]
    reader = csv.reader(io.StringIO(text, newline=""))
    next(reader, None)
    return [(row[0], row[1]) for row in reader if row]


def render_preview(rows: Iterable[TableRow], header: Sequence[str] = DEFAULT_HEADER) -> str:
    """Plain text listing shown before export."""

    lines = [",".join(header)]
    lines.extend(f"{barcode},{group}" for barcode, group in rows)
    return "\n".join(lines) + "\n"


def export_filename(prefix: str = DEFAULT_EXPORT_PREFIX, now: datetime | None = None) -> str:
    moment = now or datetime.now()
    return f"{prefix}_{moment:%y%m%d_%H%M%S}.csv"


class SaveChannel(ABC):
    """User-directed "save to chosen location" capability."""

    name = "save"

    @abstractmethod
    async def save(self, document: ExportDocument) -> str:  # pragma: no cover - interface only
        """Store *document* and return where it went.

        Raises :class:`ExportCancelled` when the user dismisses the flow.
        """


class ShareSurface(ABC):
    """Native share sheet capability."""

    name = "share"

    @abstractmethod
    def can_share_files(self) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    def can_share_text(self) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    async def share_file(self, document: ExportDocument) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    async def share_text(self, text: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


class DownloadChannel(ABC):
    """Generic download; assumed never to fail."""

    name = "download"

    @abstractmethod
    def deliver(self, document: ExportDocument) -> str | None:  # pragma: no cover - interface only
        raise NotImplementedError


class DirectorySaveChannel(SaveChannel):
    """Writes the document to a path picked by *chooser*.

    *chooser* receives the suggested file name and returns the target path,
    or ``None`` when the user cancels.
    """

    def __init__(self, chooser: Callable[[str], Path | None]) -> None:
        self._chooser = chooser

    @classmethod
    def for_directory(cls, directory: Path | str) -> "DirectorySaveChannel":
        root = Path(directory)
        return cls(lambda filename: root / filename)

    async def save(self, document: ExportDocument) -> str:
        target = self._chooser(document.filename)
        if target is None:
            raise ExportCancelled("Save cancelled")
        target = Path(target)
        try:
            await asyncio.to_thread(self._write, target, document.payload)
        except OSError as exc:
            raise ExportChannelFailure(f"Unable to write {target}: {exc}") from exc
        return str(target)

    @staticmethod
    def _write(target: Path, payload: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(payload)


class MemoryDownloadChannel(DownloadChannel):
    """Holds the last document for a caller to serve as an attachment."""

    def __init__(self) -> None:
        self.last_document: ExportDocument | None = None

    def deliver(self, document: ExportDocument) -> str | None:
        self.last_document = document
        return None


class ExportPipeline:
    """Renders the catalog table and delivers it through the best channel."""

    def __init__(
        self,
        table_provider: Callable[[], Sequence[TableRow]],
        download: DownloadChannel,
        *,
        save: SaveChannel | None = None,
        share: ShareSurface | None = None,
        prefix: str = DEFAULT_EXPORT_PREFIX,
        header: Sequence[str] = DEFAULT_HEADER,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._table_provider = table_provider
        self._download = download
        self._save = save
        self._share = share
        self._prefix = prefix
        self._header = tuple(header)
        self._clock = clock

    @property
    def save_channel(self) -> SaveChannel | None:
        return self._save

    def configure(
        self,
        *,
        prefix: str | None = None,
        header: Sequence[str] | None = None,
        save: SaveChannel | None = None,
    ) -> None:
        """Replace the file prefix, column labels and save channel."""

        if prefix is not None:
            self._prefix = prefix
        if header is not None:
            self._header = tuple(header)
        self._save = save

    def render(self) -> str:
        return render_csv(self._table_provider(), self._header)

    def preview(self) -> str:
        return render_preview(self._table_provider(), self._header)

    def build_document(self) -> ExportDocument:
        return ExportDocument(filename=export_filename(self._prefix, self._clock()), text=self.render())

    async def export(self, *, share: bool = False) -> ExportResult:
        """Deliver the rendered catalog.

        An explicit share action goes to the share surface. Otherwise, or when
        the surface accepts neither files nor text, structured save is tried.
        Download is the last resort. Cancellation ends the attempt; other
        failures fall through to download.
        """

        if not self._table_provider():
            return ExportResult(ExportOutcome.NOTHING_TO_EXPORT)
        document = self.build_document()
        failures: list[str] = []

        if share and self._share is not None:
            result = await self._try_share(document, failures)
            if result is not None:
                return result
            if failures:
                return self._deliver_download(document, failures)

        if self._save is not None:
            try:
                location = await self._save.save(document)
            except ExportCancelled:
                logger.info("Export save cancelled by user")
                return ExportResult(ExportOutcome.CANCELLED, self._save.name, document.filename)
            except Exception as exc:
                logger.warning("Save channel failed; falling back to download: %s", exc)
                failures.append(f"{self._save.name}: {exc}")
            else:
                return ExportResult(
                    ExportOutcome.SAVED, self._save.name, document.filename, location=location
                )

        return self._deliver_download(document, failures)

    async def _try_share(self, document: ExportDocument, failures: list[str]) -> ExportResult | None:
        surface = self._share
        try:
            if surface.can_share_files():
                await surface.share_file(document)
            elif surface.can_share_text():
                await surface.share_text(document.text)
            else:
                logger.debug("Share surface accepts neither files nor text")
                return None
        except ExportCancelled:
            logger.info("Export share cancelled by user")
            return ExportResult(ExportOutcome.CANCELLED, surface.name, document.filename)
        except Exception as exc:
            logger.warning("Share channel failed; falling back to download: %s", exc)
            failures.append(f"{surface.name}: {exc}")
            return None
        return ExportResult(ExportOutcome.SHARED, surface.name, document.filename)

    def _deliver_download(self, document: ExportDocument, failures: list[str]) -> ExportResult:
        location = self._download.deliver(document)
        return ExportResult(
            ExportOutcome.DOWNLOADED,
            self._download.name,
            document.filename,
            location=location,
            failures=tuple(failures),
        )


__all__ = [
    "BOM",
    "CSV_MEDIA_TYPE",
    "DEFAULT_EXPORT_PREFIX",
    "DEFAULT_HEADER",
    "DirectorySaveChannel",
    "DownloadChannel",
    "ExportCancelled",
    "ExportChannelFailure",
    "ExportDocument",
    "ExportOutcome",
    "ExportPipeline",
    "ExportResult",
    "MemoryDownloadChannel",
    "SaveChannel",
    "ShareSurface",
    "export_filename",
    "parse_csv",
    "render_csv",
    "render_preview",
]
