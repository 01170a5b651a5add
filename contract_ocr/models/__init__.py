
from .ocr import FieldResult, ModelEndpoint, OCRResult, QualityMetrics, QualityReport
from .records import QueuedTask, RecordStatus, TaskStatus, TrainingSample, UserRecord
from .roi import ROIConfig, ROIField, load_roi_config

__all__ = [
    "FieldResult",
    "ModelEndpoint",
    "OCRResult",
    "QualityMetrics",
    "QualityReport",
    "QueuedTask",
    "RecordStatus",
    "TaskStatus",
    "TrainingSample",
    "UserRecord",
    "ROIConfig",
    "ROIField",
    "load_roi_config",
]
