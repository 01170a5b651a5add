# contract_ocr/core/database.py
from pymongo import MongoClient
from pymongo.database import Database

from contract_ocr.core.config import Settings
from contract_ocr.core.errors import ConfigurationError
from contract_ocr.core.logger import get_logger

logger = get_logger("database")

RECORDS_COLLECTION = "ocr_records"
SAMPLES_COLLECTION = "training_samples"
ROI_COLLECTION = "roi_configs"


def get_database(settings: Settings) -> Database:
    """
    Open the MongoDB database named in settings.
    Connection is lazy in pymongo; the first query surfaces network errors.
    """
    if not settings.MONGO_URI:
        raise ConfigurationError("CONTRACT_OCR_MONGO_URI is not set")

    client = MongoClient(settings.MONGO_URI, tz_aware=True)
    db = client[settings.MONGO_DB]

    # newest-first listings
    db[RECORDS_COLLECTION].create_index([("timestamp", -1)])
    db[SAMPLES_COLLECTION].create_index([("timestamp", -1)])

    logger.info("Using MongoDB database %s", settings.MONGO_DB)
    return db
