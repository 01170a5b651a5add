# contract_ocr/routes/records.py
from fastapi import APIRouter, Depends, Query

from contract_ocr.models.records import UserRecord
from contract_ocr.models.schemas import RecordPage, ReviewForm, ReviewRequest, ReviewResponse
from contract_ocr.routes.deps import Services, get_services
from contract_ocr.services.corrections import initial_selections

router = APIRouter(prefix="/records", tags=["Records"])


@router.get("", response_model=RecordPage)
def list_records(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    services: Services = Depends(get_services),
):
    records, total = services.store.get_records(page, page_size)
    return RecordPage(records=records, total=total, page=page, page_size=page_size)


@router.get("/{record_id}", response_model=UserRecord)
def get_record(record_id: str, services: Services = Depends(get_services)):
    return services.store.get_record(record_id)


@router.get("/{record_id}/review", response_model=ReviewForm)
def review_form(record_id: str, services: Services = Depends(get_services)):
    record = services.store.get_record(record_id)
    keys = services.store.get_rois().field_keys()
    return ReviewForm(record_id=record.id, selections=initial_selections(record, keys))


@router.post("/{record_id}/review", response_model=ReviewResponse)
def submit_review(record_id: str, req: ReviewRequest, services: Services = Depends(get_services)):
    """
    Store the reviewer's final values. The verified accuracy is scored
    against the precise engine's original output.
    """
    sample = services.reviews.submit_review(record_id, req.selections)
    return ReviewResponse(record_id=record_id, sample=sample)
