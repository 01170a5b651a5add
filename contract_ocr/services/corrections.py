# contract_ocr/services/corrections.py
from __future__ import annotations

import threading
import uuid
from collections import deque
from typing import Dict, Iterable, Mapping, Tuple

from contract_ocr.core.logger import get_logger
from contract_ocr.models.records import RecordStatus, TrainingSample, UserRecord
from contract_ocr.services.consensus import verified_accuracy
from contract_ocr.services.storage import RecordStore
from contract_ocr.utils.helpers import now_ms

logger = get_logger("corrections")


class SampleHistory:
    """
    Most recent N training samples, oldest first.
    Appends are atomic and trim on every call; readers get a snapshot.
    """

    def __init__(self, limit: int = 100):
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.limit = limit
        self._lock = threading.Lock()
        self._items: deque[TrainingSample] = deque(maxlen=limit)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def append(self, sample: TrainingSample) -> None:
        with self._lock:
            self._items.append(sample)

    def load(self, samples: Iterable[TrainingSample]) -> None:
        """Seed from storage; input may be in any order."""
        ordered = sorted(samples, key=lambda s: s.timestamp)
        with self._lock:
            self._items.clear()
            self._items.extend(ordered)

    def snapshot(self) -> Tuple[TrainingSample, ...]:
        with self._lock:
            return tuple(self._items)

    def recent(self, n: int) -> Tuple[TrainingSample, ...]:
        if n <= 0:
            return ()
        with self._lock:
            return tuple(self._items)[-n:]


def initial_selections(record: UserRecord, field_keys: Iterable[str]) -> Dict[str, str]:
    """Pre-fill a review form: precise value first, fast value as fallback."""
    out: Dict[str, str] = {}
    primary = record.result.primary_fields
    secondary = record.result.secondary_fields
    for k in field_keys:
        sec = secondary.get(k)
        pri = primary.get(k)
        out[k] = (sec.value if sec else "") or (pri.value if pri else "")
    return out


class ReviewService:
    def __init__(self, store: RecordStore, history: SampleHistory):
        self.store = store
        self.history = history

    def submit_review(self, record_id: str, selections: Mapping[str, str]) -> TrainingSample:
        """
        Score the reviewer's final values against the precise engine, keep
        them as a training sample and mark the record reviewed.
        """
        record = self.store.get_record(record_id)
        field_keys = self.store.get_rois().field_keys()
        corrections = {k: str(v) for k, v in selections.items()}

        accuracy = verified_accuracy(corrections, record.result.secondary_fields, field_keys)
        sample = TrainingSample(
            id=uuid.uuid4().hex,
            timestamp=now_ms(),
            corrections=corrections,
            accuracy=accuracy,
        )

        # status first: a failed update must not leave a sample behind
        self.store.update_record_status(record_id, RecordStatus.reviewed, corrections)
        self.store.add_sample(sample, record_id)
        self.history.append(sample)

        logger.info("Record %s reviewed, verified accuracy %d%%", record_id, accuracy)
        return sample
