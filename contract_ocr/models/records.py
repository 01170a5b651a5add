# contract_ocr/models/records.py
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from contract_ocr.models.ocr import OCRResult, QualityReport


class RecordStatus(str, Enum):
    pending = "pending"
    reviewed = "reviewed"


class TaskStatus(str, Enum):
    pending = "pending"
    compressing = "compressing"
    uploading = "uploading"
    extracting = "extracting"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.completed, TaskStatus.failed)


class UserRecord(BaseModel):
    """A persisted extraction, later reviewed by a human."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    timestamp: int  # epoch ms
    image_url: str = Field(alias="imageUrl")
    result: OCRResult
    status: RecordStatus = RecordStatus.pending
    consensus_rate: int = Field(0, ge=0, le=100, alias="consensusRate")
    corrections: Optional[Dict[str, str]] = None


class TrainingSample(BaseModel):
    """Reviewer corrections replayed as prompt context for later extractions."""

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: int  # epoch ms
    corrections: Dict[str, str]
    accuracy: int = Field(ge=0, le=100)


class QueuedTask(BaseModel):
    """
    Snapshot of one submitted image inside the task queue.
    Snapshots are immutable; every state change produces a new one.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    internal_id: str = Field(alias="internalId")
    file: bytes = Field(repr=False, exclude=True)
    preview: str
    status: TaskStatus = TaskStatus.pending
    progress_label: str = Field("", alias="progressLabel")
    result: Optional[OCRResult] = None
    record_id: Optional[str] = Field(None, alias="recordId")
    error_msg: Optional[str] = Field(None, alias="errorMsg")
    consensus_rate: Optional[int] = Field(None, alias="consensusRate")
    quality: Optional[QualityReport] = None
