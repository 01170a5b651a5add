# contract_ocr/services/pipeline.py
from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Tuple

from contract_ocr.core.errors import ContractOCRError, DuplicateRecordError
from contract_ocr.core.logger import get_logger
from contract_ocr.models.records import QueuedTask, RecordStatus, TaskStatus, UserRecord
from contract_ocr.services.consensus import consensus_rate
from contract_ocr.services.corrections import SampleHistory
from contract_ocr.services.extraction_client import ExtractionClient
from contract_ocr.services.preprocessing import compress_image
from contract_ocr.services.storage import ImageStore, RecordStore
from contract_ocr.services.task_queue import TaskQueue
from contract_ocr.utils.helpers import new_record_id, now_ms

logger = get_logger("pipeline")

SAVE_ATTEMPTS = 5


class ExtractionPipeline:
    """
    One independent run per submitted image:
    compress -> upload -> extract (fast + precise) -> score -> persist.

    Runs are not retried; a failed task stays failed and the operator
    resubmits the image as a new task.
    """

    def __init__(
        self,
        queue: TaskQueue,
        client: ExtractionClient,
        store: RecordStore,
        image_store: ImageStore,
        history: SampleHistory,
        *,
        max_side: int = 1280,
        jpeg_quality: int = 80,
        prompt_sample_count: int = 3,
        max_concurrent: int | None = None,
    ):
        self.queue = queue
        self.client = client
        self.store = store
        self.image_store = image_store
        self.history = history
        self.max_side = max_side
        self.jpeg_quality = jpeg_quality
        self.prompt_sample_count = prompt_sample_count
        self._semaphore = asyncio.Semaphore(max_concurrent) if max_concurrent else None
        self._running: Dict[str, asyncio.Task] = {}

    # ---- submission ----
    def submit(self, file: bytes, preview: str) -> QueuedTask:
        """Queue an image and start its run right away (needs a running loop)."""
        task = self.queue.create(file, preview)
        task_id = task.internal_id

        runner = asyncio.get_running_loop().create_task(self._run(task_id), name=f"ocr-{task_id}")
        self._running[task_id] = runner
        runner.add_done_callback(lambda _: self._running.pop(task_id, None))
        return task

    def submit_many(self, files: Iterable[Tuple[bytes, str]]) -> List[QueuedTask]:
        return [self.submit(data, preview) for data, preview in files]

    async def wait(self, task_id: str) -> QueuedTask:
        runner = self._running.get(task_id)
        if runner is not None:
            await runner
        return self.queue.get(task_id)

    async def drain(self) -> None:
        """Wait for every run that is currently in flight."""
        while True:
            active = [t for t in self._running.values() if not t.done()]
            if not active:
                return
            await asyncio.gather(*active)

    # ---- run ----
    async def _run(self, task_id: str) -> None:
        if self._semaphore is None:
            await self._guarded(task_id)
            return
        async with self._semaphore:
            await self._guarded(task_id)

    async def _guarded(self, task_id: str) -> None:
        try:
            await self._process(task_id)
        except ContractOCRError as e:
            logger.warning("Task %s failed: %s", task_id, e)
            self.queue.fail(task_id, str(e))
        except Exception as e:
            logger.exception("Task %s crashed", task_id)
            self.queue.fail(task_id, f"Unexpected error: {e}")

    async def _process(self, task_id: str) -> None:
        task = self.queue.transition(task_id, TaskStatus.compressing)
        prepared = await asyncio.to_thread(compress_image, task.file, self.max_side, self.jpeg_quality)

        self.queue.transition(task_id, TaskStatus.uploading, quality=prepared.quality)
        image_url = await asyncio.to_thread(self.image_store.upload_image, prepared.data)

        self.queue.transition(task_id, TaskStatus.extracting)
        # snapshots: later ROI edits or reviews do not affect this run
        roi_config = await asyncio.to_thread(self.store.get_rois)
        samples = self.history.recent(self.prompt_sample_count)
        result = await self.client.extract(prepared.base64, roi_config, samples)

        rate = consensus_rate(result, roi_config)
        record = UserRecord(
            id=new_record_id(),
            timestamp=now_ms(),
            image_url=image_url,
            result=result,
            status=RecordStatus.pending,
            consensus_rate=rate,
        )
        # persisted before the task can be observed as completed
        record = await asyncio.to_thread(self._save_with_fresh_id, record)

        self.queue.transition(
            task_id,
            TaskStatus.completed,
            result=result,
            record_id=record.id,
            consensus_rate=rate,
        )
        logger.info("Task %s stored as %s (consensus %d%%)", task_id, record.id, rate)

    def _save_with_fresh_id(self, record: UserRecord) -> UserRecord:
        """Record ids share a small daily space; a taken id gets a new draw."""
        attempt = 1
        while True:
            try:
                self.store.save_record(record)
                return record
            except DuplicateRecordError:
                if attempt >= SAVE_ATTEMPTS:
                    raise
                logger.info("Record id %s taken, drawing another", record.id)
                attempt += 1
                record = record.model_copy(update={"id": new_record_id()})
