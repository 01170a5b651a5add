# contract_ocr/services/storage.py
from __future__ import annotations

import datetime as dt
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

from pydantic import ValidationError
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from contract_ocr.core.database import RECORDS_COLLECTION, ROI_COLLECTION, SAMPLES_COLLECTION
from contract_ocr.core.errors import (
    DuplicateRecordError,
    PersistenceError,
    RecordNotFoundError,
    ROIConfigError,
    UploadError,
)
from contract_ocr.core.logger import get_logger
from contract_ocr.models.constants import INITIAL_ROIS
from contract_ocr.models.records import RecordStatus, TrainingSample, UserRecord
from contract_ocr.models.roi import ROIConfig, load_roi_config
from contract_ocr.utils.helpers import ensure_dir

logger = get_logger("storage")

# Matches the window the review screen reads
DEFAULT_SAMPLE_LIMIT = 100


class ImageStore(Protocol):
    def upload_image(self, data: bytes) -> str: ...


class RecordStore(Protocol):
    def save_record(self, record: UserRecord) -> None: ...

    def get_record(self, record_id: str) -> UserRecord: ...

    def get_records(self, page: int, page_size: int) -> Tuple[List[UserRecord], int]: ...

    def update_record_status(self, record_id: str, status: RecordStatus, corrections: Dict[str, str]) -> None: ...

    def get_samples(self, limit: int = DEFAULT_SAMPLE_LIMIT) -> List[TrainingSample]: ...

    def add_sample(self, sample: TrainingSample, record_id: Optional[str] = None) -> None: ...

    def get_rois(self) -> ROIConfig: ...

    def update_rois(self, config: ROIConfig) -> None: ...


def default_rois() -> ROIConfig:
    return load_roi_config(INITIAL_ROIS)


def _page_bounds(page: int, page_size: int) -> Tuple[int, int]:
    page = max(1, int(page))
    page_size = max(1, int(page_size))
    start = (page - 1) * page_size
    return start, page_size


# ---------------------------------------------------------------------------
# Object storage
# ---------------------------------------------------------------------------
class LocalImageStore:
    """Writes JPEGs under a media root that the web app serves statically."""

    def __init__(self, root: str | Path, public_base_url: str = "/media"):
        self.root = ensure_dir(root)
        self.public_base_url = public_base_url.rstrip("/")

    def upload_image(self, data: bytes) -> str:
        day = dt.datetime.now().strftime("%Y%m%d")
        rel = f"{day}/{uuid.uuid4().hex}.jpg"
        try:
            ensure_dir(self.root / day)
            (self.root / rel).write_bytes(data)
        except OSError as e:
            raise UploadError(f"Could not store image: {e}") from e
        return f"{self.public_base_url}/{rel}"


# ---------------------------------------------------------------------------
# In-process record store
# ---------------------------------------------------------------------------
class MemoryRecordStore:
    """Dict-backed store for local runs and tests."""

    def __init__(self, rois: ROIConfig | None = None):
        self._lock = threading.Lock()
        self._records: Dict[str, UserRecord] = {}
        self._samples: List[Tuple[TrainingSample, Optional[str]]] = []
        self._rois = rois or default_rois()

    def save_record(self, record: UserRecord) -> None:
        with self._lock:
            if record.id in self._records:
                raise DuplicateRecordError(record.id)
            self._records[record.id] = record.model_copy(deep=True)

    def get_record(self, record_id: str) -> UserRecord:
        with self._lock:
            record = self._records.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record.model_copy(deep=True)

    def get_records(self, page: int, page_size: int) -> Tuple[List[UserRecord], int]:
        start, size = _page_bounds(page, page_size)
        with self._lock:
            ordered = sorted(self._records.values(), key=lambda r: r.timestamp, reverse=True)
        return [r.model_copy(deep=True) for r in ordered[start:start + size]], len(ordered)

    def update_record_status(self, record_id: str, status: RecordStatus, corrections: Dict[str, str]) -> None:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise RecordNotFoundError(record_id)
            self._records[record_id] = record.model_copy(
                update={"status": status, "corrections": dict(corrections)}
            )

    def get_samples(self, limit: int = DEFAULT_SAMPLE_LIMIT) -> List[TrainingSample]:
        with self._lock:
            newest_first = [s for s, _ in reversed(self._samples)]
        return newest_first[:limit]

    def add_sample(self, sample: TrainingSample, record_id: Optional[str] = None) -> None:
        with self._lock:
            self._samples.append((sample, record_id))

    def get_rois(self) -> ROIConfig:
        with self._lock:
            return self._rois

    def update_rois(self, config: ROIConfig) -> None:
        config = load_roi_config(config)
        with self._lock:
            self._rois = config


# ---------------------------------------------------------------------------
# MongoDB record store
# ---------------------------------------------------------------------------
class MongoRecordStore:
    """
    pymongo-backed store.
    - ocr_records: one document per UserRecord, _id = record id
    - training_samples: reviewer corrections, linked by record_id
    - roi_configs: the document flagged is_active holds the ROI config
    """

    def __init__(self, db: Database):
        self.records = db[RECORDS_COLLECTION]
        self.samples = db[SAMPLES_COLLECTION]
        self.rois = db[ROI_COLLECTION]

    @staticmethod
    def _record_from_doc(doc: Dict[str, Any]) -> UserRecord:
        doc = dict(doc)
        doc["id"] = doc.pop("_id")
        return UserRecord.model_validate(doc)

    def save_record(self, record: UserRecord) -> None:
        doc = record.model_dump(mode="json", by_alias=True)
        doc["_id"] = doc.pop("id")
        try:
            self.records.insert_one(doc)
        except DuplicateKeyError as e:
            raise DuplicateRecordError(record.id) from e
        except PyMongoError as e:
            raise PersistenceError(f"Could not save record {record.id}: {e}") from e

    def get_record(self, record_id: str) -> UserRecord:
        try:
            doc = self.records.find_one({"_id": record_id})
        except PyMongoError as e:
            raise PersistenceError(f"Could not load record {record_id}: {e}") from e
        if doc is None:
            raise RecordNotFoundError(record_id)
        return self._record_from_doc(doc)

    def get_records(self, page: int, page_size: int) -> Tuple[List[UserRecord], int]:
        start, size = _page_bounds(page, page_size)
        try:
            total = self.records.count_documents({})
            cursor = self.records.find({}).sort("timestamp", DESCENDING).skip(start).limit(size)
            docs = list(cursor)
        except PyMongoError as e:
            raise PersistenceError(f"Could not list records: {e}") from e
        return [self._record_from_doc(d) for d in docs], total

    def update_record_status(self, record_id: str, status: RecordStatus, corrections: Dict[str, str]) -> None:
        try:
            res = self.records.update_one(
                {"_id": record_id},
                {"$set": {"status": RecordStatus(status).value, "corrections": dict(corrections)}},
            )
        except PyMongoError as e:
            raise PersistenceError(f"Could not update record {record_id}: {e}") from e
        if res.matched_count == 0:
            raise RecordNotFoundError(record_id)

    def get_samples(self, limit: int = DEFAULT_SAMPLE_LIMIT) -> List[TrainingSample]:
        try:
            docs = list(self.samples.find({}).sort("timestamp", DESCENDING).limit(limit))
        except PyMongoError as e:
            # samples only enrich the prompt; extraction can go on without them
            logger.error("Fetch samples error: %s", e)
            return []

        out: List[TrainingSample] = []
        for d in docs:
            try:
                out.append(TrainingSample(
                    id=str(d.get("sample_id") or d.get("_id")),
                    timestamp=d["timestamp"],
                    corrections=d.get("corrections") or {},
                    accuracy=d.get("accuracy", 0),
                ))
            except (KeyError, ValidationError) as e:
                logger.warning("Skipping bad training sample %s: %s", d.get("_id"), e)
        return out

    def add_sample(self, sample: TrainingSample, record_id: Optional[str] = None) -> None:
        doc = {
            "sample_id": sample.id,
            "record_id": record_id,
            "timestamp": sample.timestamp,
            "corrections": dict(sample.corrections),
            "accuracy": sample.accuracy,
        }
        try:
            self.samples.insert_one(doc)
        except PyMongoError as e:
            raise PersistenceError(f"Could not save training sample: {e}") from e

    def get_rois(self) -> ROIConfig:
        try:
            doc = self.rois.find_one({"is_active": True})
        except PyMongoError as e:
            raise PersistenceError(f"Could not load ROI config: {e}") from e

        if not doc or not doc.get("data"):
            logger.warning("No active ROI config stored, using initial ROIs")
            return default_rois()
        try:
            return load_roi_config(doc["data"])
        except ROIConfigError:
            logger.error("Stored ROI config failed validation")
            raise

    def update_rois(self, config: ROIConfig) -> None:
        config = load_roi_config(config)
        try:
            self.rois.update_one(
                {"is_active": True},
                {"$set": {"data": config.model_dump(mode="json")}},
                upsert=True,
            )
        except PyMongoError as e:
            raise PersistenceError(f"Could not save ROI config: {e}") from e
