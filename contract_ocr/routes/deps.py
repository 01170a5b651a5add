# contract_ocr/routes/deps.py
from dataclasses import dataclass

from fastapi import Request

from contract_ocr.core.config import Settings
from contract_ocr.services.corrections import ReviewService, SampleHistory
from contract_ocr.services.pipeline import ExtractionPipeline
from contract_ocr.services.storage import RecordStore
from contract_ocr.services.task_queue import TaskQueue


@dataclass
class Services:
    settings: Settings
    store: RecordStore
    queue: TaskQueue
    pipeline: ExtractionPipeline
    history: SampleHistory
    reviews: ReviewService


def get_services(request: Request) -> Services:
    return request.app.state.services
