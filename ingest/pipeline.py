"""
Ingestion pipeline: source rows -> validated records -> embeddings -> store.

Rows are handled strictly in order. In single-row mode each row is
validated, embedded and upserted before the next one starts; in batch mode
the same steps run for a fixed-size group of rows. A failing row is
counted in the report and the run carries on. Cancellation is checked only
between rows (or batches), so a row is never left half written.
"""

import asyncio
import logging
from typing import Iterable, List

from tqdm import tqdm

from core.config import Settings
from core.embeddings import EmbeddingBackend
from core.errors import EmbeddingError, PersistenceError, ValidationError
from core.models import ColorRecord, EmbeddedColor, IngestReport
from core.validation import validate_row
from db.store import ColorStore
from ingest.source import SourceRow, read_rows

logger = logging.getLogger(__name__)


class IngestionPipeline:
    def __init__(
        self,
        backend: EmbeddingBackend,
        store: ColorStore,
        batch_size: int = 1,
        request_delay: float = 0.2,
        pause_every: int = 500,
        pause_seconds: float = 5.0,
        progress: bool = True,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.backend = backend
        self.store = store
        self.batch_size = batch_size
        self.request_delay = request_delay
        self.pause_every = pause_every
        self.pause_seconds = pause_seconds
        self.progress = progress
        self._cancel_requested = False
        self._wakeup = None

    @classmethod
    def from_settings(
        cls, settings: Settings, backend: EmbeddingBackend, store: ColorStore, **overrides
    ) -> "IngestionPipeline":
        options = dict(
            batch_size=settings.batch_size,
            request_delay=settings.request_delay,
            pause_every=settings.pause_every,
            pause_seconds=settings.pause_seconds,
        )
        options.update(overrides)
        return cls(backend, store, **options)

    def cancel(self) -> None:
        """Ask the run to stop after the row (or batch) in flight."""
        self._cancel_requested = True
        if self._wakeup is not None:
            self._wakeup.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    async def ingest_range(self, path: str, start: int = 0, stop: int = None) -> IngestReport:
        """Ingest data rows [start, stop) of the source file."""
        total = None if stop is None else stop - start
        return await self.run(read_rows(path, start, stop), start=start, total=total)

    async def run(
        self, rows: Iterable[SourceRow], start: int = 0, total: int = None
    ) -> IngestReport:
        # Bound to the running loop, so each run gets its own
        self._wakeup = asyncio.Event()
        if self._cancel_requested:
            self._wakeup.set()
        report = IngestReport(backend=self.backend.name, start=start, next_offset=start)
        since_pause = 0
        with tqdm(
            total=total,
            desc=f"Ingesting colors ({self.backend.name})",
            disable=not self.progress,
        ) as bar:
            for batch in _batches(rows, self.batch_size):
                if self.cancelled:
                    report.cancelled = True
                    logger.info("Ingestion cancelled before row %d", batch[0].offset)
                    break

                if self.batch_size == 1:
                    await self._process_row(batch[0], report)
                else:
                    await self._process_batch(batch, report)

                report.processed += len(batch)
                report.next_offset = batch[-1].offset + 1
                bar.update(len(batch))
                bar.set_postfix(stored=report.stored, failed=report.failed)

                since_pause += len(batch)
                if since_pause >= self.pause_every:
                    since_pause = 0
                    await self._sleep(self.pause_seconds)
                else:
                    await self._sleep(self.request_delay)

        logger.info("Ingestion finished: %s", report.summary())
        return report

    async def _process_row(self, row: SourceRow, report: IngestReport) -> None:
        record = self._validate(row, report)
        if record is None:
            return
        try:
            embedding = await self.backend.embed(record.name)
        except EmbeddingError as e:
            self._fail(report, row, "embedding", e)
            return
        await self._persist([(row, EmbeddedColor(record=record, embedding=embedding))], report)

    async def _process_batch(self, rows: List[SourceRow], report: IngestReport) -> None:
        valid = []
        for row in rows:
            record = self._validate(row, report)
            if record is not None:
                valid.append((row, record))
        if not valid:
            return

        try:
            outcomes = await self.backend.embed_batch([record.name for _, record in valid])
        except EmbeddingError as e:
            for row, _ in valid:
                self._fail(report, row, "embedding", e)
            return

        embedded = []
        for outcome in outcomes:
            row, record = valid[outcome.index]
            if outcome.ok:
                embedded.append((row, EmbeddedColor(record=record, embedding=outcome.embedding)))
            else:
                self._fail(report, row, "embedding", outcome.error)
        await self._persist(embedded, report)

    def _validate(self, row: SourceRow, report: IngestReport) -> ColorRecord:
        try:
            return validate_row(row.name, row.hex_color, row.marker)
        except ValidationError as e:
            self._fail(report, row, "validation", e)
            return None

    async def _persist(self, embedded, report: IngestReport) -> None:
        if not embedded:
            return
        colors = [color for _, color in embedded]
        try:
            await asyncio.to_thread(self.store.upsert, colors, self.backend.column)
        except PersistenceError as e:
            for row, _ in embedded:
                self._fail(report, row, "persistence", e)
            return
        report.stored += len(colors)

    def _fail(self, report: IngestReport, row: SourceRow, stage: str, reason) -> None:
        logger.warning("Row %d (%r) failed %s: %s", row.offset, row.name, stage, reason)
        report.record_failure(row.offset, row.name, stage, str(reason))

    async def _sleep(self, seconds: float) -> None:
        """Pause for throttling; returns early if the run is cancelled."""
        if seconds <= 0 or self.cancelled:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


def _batches(rows: Iterable[SourceRow], size: int):
    batch = []
    for row in rows:
        batch.append(row)
        if len(batch) == size:
            yield batch
            batch = []
    if batch:
        yield batch
