# contract_ocr/services/preprocessing.py
import base64
from dataclasses import dataclass
from io import BytesIO

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from contract_ocr.core.errors import PreprocessError
from contract_ocr.core.logger import get_logger
from contract_ocr.models.ocr import QualityMetrics, QualityReport

logger = get_logger("preprocessing")

# Local quality thresholds (same metrics the precise engine reports)
BLUR_VAR_MIN = 100.0
BRIGHTNESS_MIN = 60.0
DARK_PIXEL_LEVEL = 50
DARK_RATIO_MAX = 0.5


@dataclass(frozen=True)
class PreparedImage:
    data: bytes  # JPEG
    base64: str
    width: int
    height: int
    quality: QualityReport


def scaled_size(width: int, height: int, max_side: int) -> tuple[int, int]:
    """
    Longest side capped at max_side, aspect ratio preserved.
    Images already within the cap are left alone.
    """
    longest = max(width, height)
    if longest <= max_side:
        return width, height

    scale = max_side / longest
    if width >= height:
        return max_side, max(1, round(height * scale))
    return max(1, round(width * scale)), max_side


def assess_quality(img: Image.Image) -> QualityReport:
    """
    Cheap local check:
    - blur_var: variance of the Laplacian (low = blurry)
    - brightness_mean: mean grey level 0..255
    - dark_ratio: share of pixels darker than DARK_PIXEL_LEVEL
    """
    gray = cv2.cvtColor(np.array(img.convert("RGB")), cv2.COLOR_RGB2GRAY)

    blur_var = float(cv2.Laplacian(gray, cv2.CV_64F).var())
    brightness_mean = float(gray.mean())
    dark_ratio = float(np.mean(gray < DARK_PIXEL_LEVEL))

    warnings = []
    if blur_var < BLUR_VAR_MIN:
        warnings.append(f"image looks blurry (blur_var={blur_var:.1f})")
    if brightness_mean < BRIGHTNESS_MIN:
        warnings.append(f"image is too dark (brightness_mean={brightness_mean:.1f})")
    if dark_ratio > DARK_RATIO_MAX:
        warnings.append(f"large dark area (dark_ratio={dark_ratio:.2f})")

    return QualityReport(
        ok=not warnings,
        metrics=QualityMetrics(
            blur_var=round(blur_var, 2),
            brightness_mean=round(brightness_mean, 2),
            dark_ratio=round(dark_ratio, 4),
        ),
        warnings=warnings,
    )


def compress_image(data: bytes, max_side: int = 1280, quality: int = 80) -> PreparedImage:
    """
    Decode any photo, downsize and re-encode it as JPEG for the model call.
    Raises PreprocessError if the bytes are not a decodable image.
    """
    if not data:
        raise PreprocessError("Image is empty")

    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        raise PreprocessError(f"Could not decode image: {e}") from e

    # phone photos carry their rotation in EXIF
    img = ImageOps.exif_transpose(img)
    if img.mode != "RGB":
        img = img.convert("RGB")

    width, height = img.size
    if width == 0 or height == 0:
        raise PreprocessError("Decoded image has no pixels")

    target = scaled_size(width, height, max_side)
    if target != (width, height):
        img = img.resize(target, Image.Resampling.LANCZOS)

    buf = BytesIO()
    try:
        img.save(buf, format="JPEG", quality=quality, optimize=True)
    except OSError as e:
        raise PreprocessError(f"Could not encode image as JPEG: {e}") from e

    encoded = buf.getvalue()
    if not encoded:
        raise PreprocessError("JPEG encoder produced no data")

    report = assess_quality(img)
    if not report.ok:
        logger.warning("Local quality check: %s", "; ".join(report.warnings))

    return PreparedImage(
        data=encoded,
        base64=base64.b64encode(encoded).decode("ascii"),
        width=img.width,
        height=img.height,
        quality=report,
    )
