import pytest

from contract_ocr.core.errors import InvalidTransitionError, TaskNotFoundError
from contract_ocr.models.constants import PROGRESS_LABELS
from contract_ocr.models.ocr import OCRResult
from contract_ocr.models.records import TaskStatus
from contract_ocr.services.task_queue import LIFECYCLE, TaskQueue, can_transition


@pytest.fixture
def queue():
    return TaskQueue()


def _walk_to(queue, task_id, target):
    for status in LIFECYCLE[1:LIFECYCLE.index(target) + 1]:
        if status is TaskStatus.completed:
            queue.transition(task_id, status, result=OCRResult(), record_id="OCR-20240501-001")
        else:
            queue.transition(task_id, status)


def test_new_task_is_pending(queue):
    task = queue.create(b"jpeg", "a.jpg")
    assert task.status is TaskStatus.pending
    assert task.progress_label == PROGRESS_LABELS["pending"]
    assert queue.get(task.internal_id) == task
    assert queue.list_tasks() == [task]


@pytest.mark.parametrize("current, target, allowed", [
    (TaskStatus.pending, TaskStatus.compressing, True),
    (TaskStatus.compressing, TaskStatus.uploading, True),
    (TaskStatus.uploading, TaskStatus.extracting, True),
    (TaskStatus.extracting, TaskStatus.completed, True),
    (TaskStatus.pending, TaskStatus.failed, True),
    (TaskStatus.extracting, TaskStatus.failed, True),
    (TaskStatus.pending, TaskStatus.uploading, False),
    (TaskStatus.extracting, TaskStatus.compressing, False),
    (TaskStatus.compressing, TaskStatus.compressing, False),
    (TaskStatus.completed, TaskStatus.failed, False),
    (TaskStatus.failed, TaskStatus.pending, False),
    (TaskStatus.failed, TaskStatus.failed, False),
])
def test_lifecycle_rules(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_skipping_a_step_is_rejected(queue):
    task = queue.create(b"jpeg", "a.jpg")
    with pytest.raises(InvalidTransitionError):
        queue.transition(task.internal_id, TaskStatus.extracting)
    assert queue.get(task.internal_id).status is TaskStatus.pending


def test_completed_requires_result_and_record_id(queue):
    task = queue.create(b"jpeg", "a.jpg")
    _walk_to(queue, task.internal_id, TaskStatus.extracting)

    with pytest.raises(InvalidTransitionError):
        queue.transition(task.internal_id, TaskStatus.completed, result=OCRResult())
    with pytest.raises(InvalidTransitionError):
        queue.transition(task.internal_id, TaskStatus.completed, record_id="OCR-20240501-001")

    # the rejected updates left no trace
    current = queue.get(task.internal_id)
    assert current.status is TaskStatus.extracting
    assert current.result is None and current.record_id is None

    done = queue.transition(
        task.internal_id, TaskStatus.completed,
        result=OCRResult(), record_id="OCR-20240501-001", consensus_rate=80,
    )
    assert done.record_id == "OCR-20240501-001"
    assert done.consensus_rate == 80


def test_failed_task_keeps_its_message_and_is_terminal(queue):
    task = queue.create(b"jpeg", "a.jpg")
    queue.transition(task.internal_id, TaskStatus.compressing)
    failed = queue.fail(task.internal_id, "Could not decode image")

    assert failed.status is TaskStatus.failed
    assert failed.error_msg == "Could not decode image"
    with pytest.raises(InvalidTransitionError):
        queue.transition(task.internal_id, TaskStatus.uploading)


def test_snapshots_are_not_mutated_by_later_transitions(queue):
    task = queue.create(b"jpeg", "a.jpg")
    queue.transition(task.internal_id, TaskStatus.compressing)
    assert task.status is TaskStatus.pending


def test_subscribers_see_every_state_in_order(queue):
    seen = []
    unsubscribe = queue.subscribe(lambda t: seen.append(t.status))

    task = queue.create(b"jpeg", "a.jpg")
    _walk_to(queue, task.internal_id, TaskStatus.completed)
    assert seen == LIFECYCLE

    unsubscribe()
    queue.create(b"jpeg", "b.jpg")
    assert len(seen) == len(LIFECYCLE)


def test_broken_subscriber_does_not_block_the_queue(queue):
    seen = []

    def boom(task):
        raise RuntimeError("listener bug")

    queue.subscribe(boom)
    queue.subscribe(lambda t: seen.append(t.status))

    task = queue.create(b"jpeg", "a.jpg")
    queue.transition(task.internal_id, TaskStatus.compressing)
    assert seen == [TaskStatus.pending, TaskStatus.compressing]


def test_only_finished_tasks_can_be_cleared(queue):
    task = queue.create(b"jpeg", "a.jpg")
    with pytest.raises(InvalidTransitionError):
        queue.clear(task.internal_id)

    queue.fail(task.internal_id, "boom")
    queue.clear(task.internal_id)
    with pytest.raises(TaskNotFoundError):
        queue.get(task.internal_id)
    with pytest.raises(TaskNotFoundError):
        queue.clear(task.internal_id)


def test_unknown_task(queue):
    with pytest.raises(TaskNotFoundError):
        queue.transition("nope", TaskStatus.compressing)


def test_image_bytes_stay_out_of_serialized_task(queue):
    task = queue.create(b"\xff\xd8 secret bytes", "a.jpg")
    dumped = task.model_dump(by_alias=True)
    assert "file" not in dumped
    assert dumped["internalId"] == task.internal_id
    assert "secret" not in repr(task)


@pytest.mark.parametrize("finish", ["completed", "failed"])
def test_finished_tasks_release_the_upload(queue, finish):
    task = queue.create(b"\xff\xd8 large photo", "a.jpg")
    if finish == "completed":
        _walk_to(queue, task.internal_id, TaskStatus.completed)
    else:
        queue.fail(task.internal_id, "boom")

    assert queue.get(task.internal_id).file == b""
    assert task.file == b"\xff\xd8 large photo"


def test_running_tasks_keep_the_upload(queue):
    task = queue.create(b"jpeg", "a.jpg")
    _walk_to(queue, task.internal_id, TaskStatus.extracting)
    assert queue.get(task.internal_id).file == b"jpeg"
