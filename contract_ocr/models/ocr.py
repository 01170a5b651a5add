# contract_ocr/models/ocr.py
from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from contract_ocr.models.constants import NOT_DETECTED
from contract_ocr.utils.urls import normalize_chat_url


class FieldResult(BaseModel):
    """One field as read by one engine."""

    model_config = ConfigDict(frozen=True)

    value: str = ""
    conf: float = 0.0
    raw: str = ""

    @field_validator("value", "raw", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> str:
        if v is None:
            return ""
        return str(v)

    @field_validator("conf", mode="before")
    @classmethod
    def _clamp_conf(cls, v: Any) -> float:
        try:
            conf = float(v)
        except (TypeError, ValueError):
            return 0.0
        if conf != conf:  # NaN
            return 0.0
        return max(0.0, min(1.0, conf))

    @classmethod
    def not_detected(cls) -> "FieldResult":
        return cls(value="", conf=0.0, raw=NOT_DETECTED)


class QualityMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    blur_var: float = 0.0
    brightness_mean: float = 0.0
    dark_ratio: float = 0.0


class QualityReport(BaseModel):
    """Image-quality self-assessment. The bare default is the 'ok' report."""

    model_config = ConfigDict(frozen=True)

    ok: bool = True
    metrics: QualityMetrics = Field(default_factory=QualityMetrics)
    warnings: List[str] = Field(default_factory=list)


class OCRResult(BaseModel):
    """Combined output of one fast + precise extraction pair."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ok: bool = True
    quality: QualityReport = Field(default_factory=QualityReport)
    primary_fields: Dict[str, FieldResult] = Field(default_factory=dict, alias="primaryFields")
    secondary_fields: Dict[str, FieldResult] = Field(default_factory=dict, alias="secondaryFields")
    warnings: List[str] = Field(default_factory=list)
    latency_ms: int = 0


class ModelEndpoint(BaseModel):
    """Where and how to call the vision model; injected, never read globally."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    url: str
    api_key: str = ""
    model_name: str
    temperature: float = 0.1
    max_tokens: int = 2048
    image_detail: str = "high"
    timeout_s: float = 90.0

    @field_validator("url")
    @classmethod
    def _normalize_url(cls, v: str) -> str:
        return normalize_chat_url(v)

    @classmethod
    def from_settings(cls, settings) -> "ModelEndpoint":
        return cls(
            url=settings.MODEL_URL,
            api_key=settings.MODEL_API_KEY,
            model_name=settings.MODEL_NAME,
            temperature=settings.MODEL_TEMPERATURE,
            max_tokens=settings.MODEL_MAX_TOKENS,
            image_detail=settings.MODEL_IMAGE_DETAIL,
            timeout_s=settings.REQUEST_TIMEOUT_S,
        )
