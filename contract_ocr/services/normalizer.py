# contract_ocr/services/normalizer.py
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from contract_ocr.core.errors import MalformedResponseError
from contract_ocr.core.logger import get_logger
from contract_ocr.models.ocr import FieldResult, QualityReport

logger = get_logger("normalizer")

THINK_BLOCK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
CODE_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?", re.IGNORECASE)


@dataclass(frozen=True)
class NormalizedResponse:
    quality: Optional[QualityReport]
    fields: Dict[str, FieldResult]
    warnings: List[str] = field(default_factory=list)


def extract_json_block(raw_text: str) -> str:
    """
    Strip reasoning blocks and markdown fences, then return the text between
    the first '{' and the last '}' inclusive.
    """
    text = THINK_BLOCK_RE.sub("", raw_text or "")
    text = CODE_FENCE_RE.sub("", text)

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise MalformedResponseError("No JSON object found in model reply")
    return text[start:end + 1]


def _to_field(value: Any) -> Optional[FieldResult]:
    if isinstance(value, Mapping):
        try:
            return FieldResult.model_validate(dict(value))
        except ValidationError:
            return None
    if isinstance(value, str):
        return FieldResult(value=value, conf=0.0, raw=value)
    return None


def remap_fields(
    fields: Mapping[str, Any],
    expected_keys: Iterable[str],
    label_to_key: Mapping[str, str],
) -> Dict[str, FieldResult]:
    """
    Map whatever identifiers the model used back onto the schema keys.
    Exact key matches win over label matches; unknown identifiers are dropped.
    Every expected key is present in the output.
    """
    expected = list(expected_keys)
    expected_set = set(expected)

    by_key: Dict[str, FieldResult] = {}
    by_label: Dict[str, FieldResult] = {}
    dropped: List[str] = []

    for name, value in fields.items():
        ident = str(name).strip()
        parsed = _to_field(value)
        if parsed is None:
            dropped.append(ident)
            continue
        if ident in expected_set:
            by_key[ident] = parsed
        elif ident in label_to_key and label_to_key[ident] in expected_set:
            by_label.setdefault(label_to_key[ident], parsed)
        else:
            dropped.append(ident)

    if dropped:
        logger.debug("Dropped unrecognised fields: %s", dropped)

    out: Dict[str, FieldResult] = {}
    for key in expected:
        out[key] = by_key.get(key) or by_label.get(key) or FieldResult.not_detected()
    return out


def _parse_quality(value: Any) -> Optional[QualityReport]:
    if not isinstance(value, Mapping):
        return None
    try:
        return QualityReport.model_validate(dict(value))
    except ValidationError:
        logger.debug("Ignoring unparseable quality block: %r", value)
        return None


def _parse_warnings(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(w) for w in value if w is not None and str(w).strip()]


def normalize(
    raw_text: str,
    expected_keys: Iterable[str],
    label_to_key: Mapping[str, str],
) -> NormalizedResponse:
    """Clean one model reply and validate it against the field schema."""
    block = extract_json_block(raw_text)

    try:
        payload = json.loads(block)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Model reply is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise MalformedResponseError("Model reply JSON is not an object")

    fields = payload["fields"] if "fields" in payload else {}
    if not isinstance(fields, dict):
        raise MalformedResponseError("'fields' in model reply is not an object")

    return NormalizedResponse(
        quality=_parse_quality(payload.get("quality")),
        fields=remap_fields(fields, expected_keys, label_to_key),
        warnings=_parse_warnings(payload.get("warnings")),
    )
