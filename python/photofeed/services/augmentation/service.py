"""Augmentation scheduling: dedupe, enqueue, and collect outcomes.

schedule() is the single entry point for new work. It is a no-op when
the item already has a terminal record or is queued/running. Outcomes
are awaited by a background task that logs them; transient failures are
logged and dropped, leaving the item eligible for the next trigger.
"""

import asyncio
from typing import Any

from photofeed.logging import configure_task_logging, get_logger
from photofeed.services.augmentation.errors import TransientMediaError
from photofeed.services.augmentation.pipeline import AugmentationPipeline
from photofeed.services.augmentation.queue import JobQueue
from photofeed.services.augmentation.store import AugmentationStore
from photofeed.services.background import BackgroundTasks
from photofeed.services.llm import LLMError
from photofeed.services.redact import fingerprint

logger = get_logger(__name__)


class AugmentationService:
    def __init__(
        self,
        pipeline: AugmentationPipeline,
        queue: JobQueue,
        store: AugmentationStore,
        tasks: BackgroundTasks,
    ):
        self.pipeline = pipeline
        self.queue = queue
        self.store = store
        self.tasks = tasks
        self._in_flight: set[tuple[str, str]] = set()

    async def get_record(self, token: str, item_id: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self.store.get, token, item_id)

    def is_in_flight(self, token: str, item_id: str) -> bool:
        return (token, item_id) in self._in_flight

    async def schedule(self, token: str, item_id: str, media_url: str) -> bool:
        """Enqueue an item unless it is terminal or already in flight.

        Returns:
            True if a job was enqueued.
        """
        key = (token, item_id)
        if key in self._in_flight:
            return False
        if await self.get_record(token, item_id) is not None:
            return False
        # Another caller may have claimed the key while the store was read
        if key in self._in_flight:
            return False

        self._in_flight.add(key)
        future = self.queue.submit(
            lambda: self._run_job(token, item_id, media_url), name=f"augment:{item_id}"
        )
        self.tasks.spawn(
            self._collect(key, future),
            name=f"augment-collect:{item_id}",
            on_error=lambda _exc: self._in_flight.discard(key),
        )
        logger.info(
            "augmentation_enqueued",
            token_fp=fingerprint(token),
            item_id=item_id,
            pending=self.queue.pending,
        )
        return True

    async def _run_job(self, token: str, item_id: str, media_url: str) -> dict[str, Any]:
        configure_task_logging(task_name="augmentation", task_id=item_id)
        return await self.pipeline.process(token, item_id, media_url)

    async def _collect(self, key: tuple[str, str], future) -> None:
        token, item_id = key
        try:
            record = await future
        except (TransientMediaError, LLMError) as e:
            logger.warning(
                "augmentation_transient_failure",
                token_fp=fingerprint(token),
                item_id=item_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return
        finally:
            self._in_flight.discard(key)

        logger.info(
            "augmentation_finished",
            token_fp=fingerprint(token),
            item_id=item_id,
            skipped=bool(record.get("skipped")),
            reason=record.get("reason"),
        )
