# contract_ocr/services/consensus.py
import math
from typing import Iterable, Mapping

from contract_ocr.models.ocr import FieldResult, OCRResult
from contract_ocr.models.roi import ROIConfig


def percent(matches: int, total: int) -> int:
    """Whole percentage, halves rounded up; 0 when there is nothing to count."""
    if total <= 0:
        return 0
    return int(math.floor(100 * matches / total + 0.5))


def _value(fields: Mapping[str, FieldResult], key: str) -> str | None:
    field = fields.get(key)
    return field.value if field is not None else None


def consensus_rate(result: OCRResult, roi_config: ROIConfig) -> int:
    """Share of fields where the fast and precise engines read identical text."""
    keys = roi_config.field_keys()
    matches = sum(
        1 for k in keys
        if _value(result.primary_fields, k) == _value(result.secondary_fields, k)
    )
    return percent(matches, len(keys))


def verified_accuracy(
    selections: Mapping[str, str],
    secondary_fields: Mapping[str, FieldResult],
    field_keys: Iterable[str],
) -> int:
    """
    Share of fields where the reviewer's final value equals the precise
    engine's original value. The precise engine is the scoring baseline,
    not an independent ground truth.
    """
    keys = list(field_keys)
    matches = 0
    for k in keys:
        baseline = _value(secondary_fields, k)
        if baseline is not None and selections.get(k) == baseline:
            matches += 1
    return percent(matches, len(keys))
