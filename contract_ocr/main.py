# contract_ocr/main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from contract_ocr.core.config import CONFIG, Settings
from contract_ocr.core.database import get_database
from contract_ocr.core.errors import (
    InvalidTransitionError,
    PersistenceError,
    RecordNotFoundError,
    ROIConfigError,
    TaskNotFoundError,
)
from contract_ocr.core.logger import get_logger
from contract_ocr.models.ocr import ModelEndpoint
from contract_ocr.routes.deps import Services
from contract_ocr.routes.records import router as records_router
from contract_ocr.routes.rois import router as rois_router
from contract_ocr.routes.tasks import router as tasks_router
from contract_ocr.services.corrections import ReviewService, SampleHistory
from contract_ocr.services.extraction_client import ExtractionClient
from contract_ocr.services.pipeline import ExtractionPipeline
from contract_ocr.services.storage import (
    ImageStore,
    LocalImageStore,
    MemoryRecordStore,
    MongoRecordStore,
    RecordStore,
)
from contract_ocr.services.task_queue import TaskQueue

logger = get_logger("main")

# error type -> HTTP status
ERROR_STATUS = [
    (RecordNotFoundError, 404),
    (TaskNotFoundError, 404),
    (ROIConfigError, 422),
    (InvalidTransitionError, 409),
    (PersistenceError, 502),
]


def _add_error_handlers(app: FastAPI) -> None:
    for exc_type, status in ERROR_STATUS:
        async def handler(request: Request, exc: Exception, status: int = status) -> JSONResponse:
            return JSONResponse(status_code=status, content={"error": str(exc)})

        app.add_exception_handler(exc_type, handler)


def create_app(
    settings: Settings | None = None,
    *,
    store: RecordStore | None = None,
    image_store: ImageStore | None = None,
    client: ExtractionClient | None = None,
) -> FastAPI:
    """
    Wire the extraction core together. Every collaborator can be injected;
    anything left out is built from settings.
    """
    settings = settings or CONFIG
    media_root = settings.media_root()

    if store is None:
        if settings.MONGO_URI:
            store = MongoRecordStore(get_database(settings))
        else:
            logger.warning("CONTRACT_OCR_MONGO_URI not set, records are kept in memory only")
            store = MemoryRecordStore()
    if image_store is None:
        image_store = LocalImageStore(media_root, settings.PUBLIC_MEDIA_URL)
    if client is None:
        client = ExtractionClient(
            ModelEndpoint.from_settings(settings),
            sample_count=settings.PROMPT_SAMPLE_COUNT,
        )

    history = SampleHistory(settings.SAMPLE_HISTORY_LIMIT)
    history.load(store.get_samples(settings.SAMPLE_HISTORY_LIMIT))

    queue = TaskQueue()
    pipeline = ExtractionPipeline(
        queue,
        client,
        store,
        image_store,
        history,
        max_side=settings.IMAGE_MAX_SIDE,
        jpeg_quality=settings.JPEG_QUALITY,
        prompt_sample_count=settings.PROMPT_SAMPLE_COUNT,
        max_concurrent=settings.MAX_CONCURRENT_TASKS,
    )

    app = FastAPI(
        title="Contract OCR – dual engine",
        version="0.1.0",
    )
    app.state.services = Services(
        settings=settings,
        store=store,
        queue=queue,
        pipeline=pipeline,
        history=history,
        reviews=ReviewService(store, history),
    )

    # CORS (relaxed; tighten if needed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Uploaded contract images
    if settings.PUBLIC_MEDIA_URL.startswith("/"):
        app.mount(settings.PUBLIC_MEDIA_URL, StaticFiles(directory=str(media_root)), name="media")

    @app.get("/")
    def root_index():
        return {
            "message": "Contract OCR dual-engine service is running",
            "samples": len(history),
            "tasks": len(queue.list_tasks()),
        }

    app.include_router(tasks_router)
    app.include_router(records_router)
    app.include_router(rois_router)
    _add_error_handlers(app)

    return app


app = create_app()
