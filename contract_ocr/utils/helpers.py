# contract_ocr/utils/helpers.py
import base64
import datetime as dt
import random
import time
from pathlib import Path


def b64_to_bytes(b64: str) -> bytes:
    """
    Accepts either:
      - raw base64 string
      - or 'data:image/jpeg;base64,...'
    """
    if "," in b64 and b64.strip().startswith("data:"):
        b64 = b64.split(",", 1)[1]
    return base64.b64decode(b64)


def jpeg_data_url(b64: str) -> str:
    return f"data:image/jpeg;base64,{b64}"


def ensure_dir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def now_ms() -> int:
    return int(time.time() * 1000)


def new_record_id(now: dt.datetime | None = None) -> str:
    """OCR-<YYYYMMDD>-<3 random digits>, e.g. OCR-20250114-042."""
    now = now or dt.datetime.now()
    return f"OCR-{now.strftime('%Y%m%d')}-{random.randint(0, 999):03d}"
