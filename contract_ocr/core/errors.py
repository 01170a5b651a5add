# contract_ocr/core/errors.py


class ContractOCRError(Exception):
    """Base exception for everything the extraction core raises."""


class ConfigurationError(ContractOCRError):
    """Raised when runtime configuration (e.g. the model URL) is unusable."""


class ROIConfigError(ContractOCRError):
    """Raised when a region-of-interest config is rejected at load."""


class PreprocessError(ContractOCRError):
    """Raised when a source image cannot be decoded or re-encoded."""


class ExtractionError(ContractOCRError):
    """Raised when the dual-engine extraction cannot produce a result."""

    def __init__(self, message: str, engine: str = ""):
        super().__init__(message)
        self.engine = engine


class TransportError(ExtractionError):
    """Network failure, deadline exceeded, or non-2xx reply from the model endpoint."""

    def __init__(self, message: str, engine: str = "", status_code: int | None = None):
        super().__init__(message, engine=engine)
        self.status_code = status_code


class MalformedResponseError(ExtractionError):
    """No JSON object could be recovered from a model reply."""


class PersistenceError(ContractOCRError):
    """Raised when the record store or object storage rejects a write."""


class UploadError(PersistenceError):
    """Raised when an image cannot be written to object storage."""


class DuplicateRecordError(PersistenceError):
    """Raised when a record id is already taken in the record store."""

    def __init__(self, record_id: str):
        super().__init__(f"Record id already exists: {record_id}")
        self.record_id = record_id


class RecordNotFoundError(ContractOCRError):
    """Raised when a record id does not exist in the record store."""

    def __init__(self, record_id: str):
        super().__init__(f"Record not found: {record_id}")
        self.record_id = record_id


class InvalidTransitionError(ContractOCRError):
    """Raised when a task is moved to a state its lifecycle does not allow."""


class TaskNotFoundError(ContractOCRError):
    """Raised when a task id is not (or no longer) in the queue."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id
