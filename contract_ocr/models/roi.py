# contract_ocr/models/roi.py
from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from contract_ocr.core.errors import ROIConfigError


class ROIField(BaseModel):
    """One labelled region; coords are (x1, y1, x2, y2) as fractions of the page."""

    model_config = ConfigDict(frozen=True)

    label: str
    coords: Tuple[float, float, float, float]

    @model_validator(mode="after")
    def _check_box(self) -> "ROIField":
        x1, y1, x2, y2 = self.coords
        if not (0.0 <= x1 < x2 <= 1.0):
            raise ValueError(f"x range must satisfy 0 <= x1 < x2 <= 1, got ({x1}, {x2})")
        if not (0.0 <= y1 < y2 <= 1.0):
            raise ValueError(f"y range must satisfy 0 <= y1 < y2 <= 1, got ({y1}, {y2})")
        return self


class ROIConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    template_size_hint: Tuple[int, int]
    fields: Dict[str, ROIField]

    @field_validator("fields")
    @classmethod
    def _check_keys(cls, value: Dict[str, ROIField]) -> Dict[str, ROIField]:
        for key in value:
            if not key or not key.strip():
                raise ValueError("field keys must be non-empty")
        return value

    def field_keys(self) -> List[str]:
        return list(self.fields.keys())

    def label_to_key(self) -> Dict[str, str]:
        # first key wins if two regions share a display label
        mapping: Dict[str, str] = {}
        for key, field in self.fields.items():
            mapping.setdefault(field.label, key)
        return mapping


def _no_duplicate_keys(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in pairs:
        if key in out:
            raise ROIConfigError(f"Duplicate key in ROI config: {key!r}")
        out[key] = value
    return out


def load_roi_config(source: str | bytes | Mapping[str, Any] | ROIConfig) -> ROIConfig:
    """
    Validate an ROI config from JSON text or an already-parsed mapping.
    Any violation raises ROIConfigError here, never later at draw time.
    """
    if isinstance(source, ROIConfig):
        return source

    data: Any = source
    if isinstance(source, (str, bytes)):
        try:
            data = json.loads(source, object_pairs_hook=_no_duplicate_keys)
        except json.JSONDecodeError as e:
            raise ROIConfigError(f"ROI config is not valid JSON: {e}") from e

    try:
        return ROIConfig.model_validate(data)
    except ValidationError as e:
        raise ROIConfigError(f"Invalid ROI config: {e}") from e
