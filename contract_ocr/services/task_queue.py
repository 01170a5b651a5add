# contract_ocr/services/task_queue.py
from __future__ import annotations

import threading
import uuid
from typing import Any, Callable, Dict, List

from contract_ocr.core.errors import InvalidTransitionError, TaskNotFoundError
from contract_ocr.core.logger import get_logger
from contract_ocr.models.constants import PROGRESS_LABELS
from contract_ocr.models.records import QueuedTask, TaskStatus

logger = get_logger("task_queue")

# Forward path; FAILED can be entered from any non-terminal state
LIFECYCLE = [
    TaskStatus.pending,
    TaskStatus.compressing,
    TaskStatus.uploading,
    TaskStatus.extracting,
    TaskStatus.completed,
]

Subscriber = Callable[[QueuedTask], None]


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    if current.is_terminal:
        return False
    if target is TaskStatus.failed:
        return True
    return LIFECYCLE.index(target) == LIFECYCLE.index(current) + 1


class TaskQueue:
    """
    Authoritative state of every submitted image.

    Each task is held as an immutable QueuedTask snapshot; a transition
    swaps in a new snapshot under the lock, so any reader sees a task in
    exactly one state. Subscribers are called after every change.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._tasks: Dict[str, QueuedTask] = {}
        self._subscribers: List[Subscriber] = []

    # ---- observation ----
    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, task: QueuedTask) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for cb in subscribers:
            try:
                cb(task)
            except Exception:
                logger.exception("Task subscriber failed for %s", task.internal_id)

    def get(self, task_id: str) -> QueuedTask:
        with self._lock:
            task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def list_tasks(self) -> List[QueuedTask]:
        with self._lock:
            return list(self._tasks.values())

    # ---- mutation ----
    def create(self, file: bytes, preview: str) -> QueuedTask:
        task = QueuedTask(
            internal_id=uuid.uuid4().hex,
            file=file,
            preview=preview,
            status=TaskStatus.pending,
            progress_label=PROGRESS_LABELS[TaskStatus.pending.value],
        )
        with self._lock:
            self._tasks[task.internal_id] = task
        logger.info("Task %s queued (%s)", task.internal_id, preview)
        self._notify(task)
        return task

    def transition(self, task_id: str, status: TaskStatus, **attached: Any) -> QueuedTask:
        """
        Move a task one step forward (or to failed), attaching any result
        fields in the same update.
        """
        status = TaskStatus(status)
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                raise TaskNotFoundError(task_id)
            if not can_transition(current.status, status):
                raise InvalidTransitionError(
                    f"Task {task_id}: {current.status.value} -> {status.value} is not allowed"
                )

            update: Dict[str, Any] = dict(attached)
            update["status"] = status
            update["progress_label"] = PROGRESS_LABELS[status.value]
            if status.is_terminal:
                # finished tasks no longer need the upload
                update["file"] = b""
            updated = current.model_copy(update=update)

            if status is TaskStatus.completed and (updated.result is None or not updated.record_id):
                raise InvalidTransitionError(f"Task {task_id} cannot complete without result and record id")

            self._tasks[task_id] = updated

        logger.info("Task %s -> %s", task_id, status.value)
        self._notify(updated)
        return updated

    def fail(self, task_id: str, message: str) -> QueuedTask:
        return self.transition(task_id, TaskStatus.failed, error_msg=message)

    def clear(self, task_id: str) -> None:
        """Drop a finished task from the queue; running tasks cannot be cleared."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if not task.status.is_terminal:
                raise InvalidTransitionError(f"Task {task_id} is still {task.status.value}")
            del self._tasks[task_id]
