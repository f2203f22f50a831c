"""Background processing jobs and the stale-source sweep."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from onescript.config import Settings, settings as default_settings
from onescript.db.database import Database
from onescript.errors import SourceBusyError
from onescript.pipeline.processor import SourceProcessor

logger = logging.getLogger(__name__)


class ProcessingJobs:
    """Runs ``process_source`` detached from the request that triggered it.

    Jobs are tracked until they finish so none are garbage-collected
    mid-flight and shutdown can wait for them.  Sources stranded in
    ``processing`` (crash, restart) are swept back to ``pending`` and
    re-queued.
    """

    def __init__(
        self,
        processor: SourceProcessor,
        db: Database,
        settings: Settings | None = None,
    ) -> None:
        self.processor = processor
        self.db = db
        self.settings = settings or default_settings
        self._jobs: dict[str, asyncio.Task] = {}
        self._sweeper: asyncio.Task | None = None

    @property
    def in_flight(self) -> list[str]:
        return list(self._jobs)

    def enqueue(self, source_id: str) -> asyncio.Task:
        """Schedule processing of ``source_id`` and return immediately."""
        existing = self._jobs.get(source_id)
        if existing is not None and not existing.done():
            logger.info("Source %s already queued", source_id)
            return existing

        task = asyncio.create_task(self._run(source_id), name=f"process-source-{source_id}")
        self._jobs[source_id] = task
        task.add_done_callback(lambda t: self._forget(source_id, t))
        logger.info("Queued source %s for processing", source_id)
        return task

    def _forget(self, source_id: str, task: asyncio.Task) -> None:
        if self._jobs.get(source_id) is task:
            del self._jobs[source_id]

    async def _run(self, source_id: str) -> None:
        try:
            await self.processor.process_source(source_id)
        except SourceBusyError as exc:
            logger.warning("Skipped source %s: %s", source_id, exc)
        except Exception:
            logger.exception("Background processing failed for source %s", source_id)

    async def sweep(self) -> list[str]:
        """Re-queue sources stuck in ``processing`` past the stale threshold.

        Sources with a live job in this process are not stale, however long
        they have waited in the rate limiter.
        """
        older_than = timedelta(seconds=self.settings.stale_processing_after)
        live = [sid for sid, task in self._jobs.items() if not task.done()]
        stale = await self.db.requeue_stale(older_than, exclude=live)
        if stale:
            logger.warning("Re-queuing %d stale source(s): %s", len(stale), stale)
        for source_id in stale:
            self.enqueue(source_id)
        return stale

    async def start(self) -> None:
        """Recover unfinished work, then sweep periodically."""
        await self.sweep()
        for source_id in await self.db.list_pending_ids():
            self.enqueue(source_id)
        self._sweeper = asyncio.create_task(self._sweep_forever(), name="stale-source-sweep")

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sweep_interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Stale source sweep failed")

    async def stop(self, drain: bool = True) -> None:
        """Stop sweeping; wait for (or cancel) in-flight jobs."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        jobs = list(self._jobs.values())
        if not jobs:
            return
        if not drain:
            for job in jobs:
                job.cancel()
        logger.info("Waiting for %d processing job(s)", len(jobs))
        await asyncio.gather(*jobs, return_exceptions=True)
