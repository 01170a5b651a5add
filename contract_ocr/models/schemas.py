# contract_ocr/models/schemas.py
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from contract_ocr.models.records import QueuedTask, TrainingSample, UserRecord


class SubmitRequest(BaseModel):
    """Base64 upload, with or without a data: prefix."""

    imageBase64: str
    filename: str = "upload.jpg"


class TaskList(BaseModel):
    tasks: List[QueuedTask]


class RecordPage(BaseModel):
    records: List[UserRecord]
    total: int
    page: int
    page_size: int


class ReviewRequest(BaseModel):
    """Final value per field key, as confirmed by the reviewer."""

    selections: Dict[str, str]


class ReviewForm(BaseModel):
    record_id: str
    selections: Dict[str, str]


class ReviewResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    record_id: str = Field(alias="recordId")
    sample: TrainingSample
