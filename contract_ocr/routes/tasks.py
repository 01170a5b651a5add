# contract_ocr/routes/tasks.py
import binascii
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile

from contract_ocr.models.records import QueuedTask
from contract_ocr.models.schemas import SubmitRequest, TaskList
from contract_ocr.routes.deps import Services, get_services
from contract_ocr.utils.helpers import b64_to_bytes

router = APIRouter(prefix="/tasks", tags=["Tasks"])


@router.post("", response_model=TaskList, status_code=202)
async def submit_images(
    files: List[UploadFile] = File(...),
    services: Services = Depends(get_services),
):
    """
    Queue one or more contract photos. Every image starts its own
    extraction run immediately; poll GET /tasks/{id} for progress.
    """
    queued = []
    for upload in files:
        data = await upload.read()
        queued.append(services.pipeline.submit(data, upload.filename or "upload"))
    return TaskList(tasks=queued)


@router.post("/base64", response_model=QueuedTask, status_code=202)
async def submit_base64(req: SubmitRequest, services: Services = Depends(get_services)):
    try:
        data = b64_to_bytes(req.imageBase64)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="imageBase64 is not valid base64")
    return services.pipeline.submit(data, req.filename)


@router.get("", response_model=TaskList)
def list_tasks(services: Services = Depends(get_services)):
    return TaskList(tasks=services.queue.list_tasks())


@router.get("/{task_id}", response_model=QueuedTask)
def get_task(task_id: str, services: Services = Depends(get_services)):
    return services.queue.get(task_id)


@router.delete("/{task_id}", status_code=204)
def clear_task(task_id: str, services: Services = Depends(get_services)):
    services.queue.clear(task_id)
    return Response(status_code=204)
