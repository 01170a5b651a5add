# contract_ocr/services/extraction_client.py
from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Dict, List, Mapping, Sequence, Tuple

import aiohttp

from contract_ocr.core.errors import MalformedResponseError, TransportError
from contract_ocr.core.logger import get_logger
from contract_ocr.models.ocr import ModelEndpoint, OCRResult, QualityReport
from contract_ocr.models.records import TrainingSample
from contract_ocr.models.roi import ROIConfig
from contract_ocr.services.normalizer import NormalizedResponse, normalize
from contract_ocr.utils.helpers import jpeg_data_url

logger = get_logger("extraction")

FAST = "fast"
PRECISE = "precise"

# Instruction-level mode label per engine; everything else is shared
ENGINE_MODES = {
    FAST: "fast scan mode",
    PRECISE: "high-precision verification mode",
}

# How much of a failing response body ends up in the error message
BODY_SNIPPET = 200

RESPONSE_EXAMPLE = {
    "quality": {
        "ok": True,
        "metrics": {"blur_var": 500, "brightness_mean": 180, "dark_ratio": 0.01},
        "warnings": [],
    },
    "fields": {"agreement_no": {"value": "ABC123", "conf": 0.99, "raw": "合同编号：ABC123"}},
    "warnings": [],
}


# ---------------------------------------------------------------------------
# Prompt building
# ---------------------------------------------------------------------------
def build_field_manifest(roi_config: ROIConfig) -> str:
    lines = []
    for key, field in roi_config.fields.items():
        coords = ", ".join(f"{c:g}" for c in field.coords)
        lines.append(f"- {key} ({field.label}): region [{coords}]")
    return "\n".join(lines)


def build_correction_context(samples: Sequence[TrainingSample], count: int) -> str:
    """Last `count` reviewer corrections, one JSON object per line."""
    recent = list(samples)[-count:] if count > 0 else []
    if not recent:
        return ""
    body = "\n".join(json.dumps(s.corrections, ensure_ascii=False) for s in recent)
    return "Recent human-verified corrections (use them to avoid repeating mistakes):\n" + body


def build_system_prompt(roi_config: ROIConfig, samples: Sequence[TrainingSample], count: int) -> str:
    context = build_correction_context(samples, count)
    example = json.dumps(RESPONSE_EXAMPLE, ensure_ascii=False, indent=2)
    return f"""You are a contract OCR structuring expert.
Task: read the contract photo and extract the text inside each region below.
Regions are given as fractions of the page width/height [x1, y1, x2, y2].
Fields:
{build_field_manifest(roi_config)}
{context}

Output rules:
1. Output exactly one JSON object and nothing else.
2. No markdown, no code fences, no explanations before or after the JSON.
3. "quality" holds ok, metrics (blur_var, brightness_mean, dark_ratio) and warnings.
4. "fields" is keyed by the field key above; each entry has value, conf (0-1) and raw.
5. If a region is blurry or empty, leave value empty and explain why in raw.
6. Amounts are plain digit strings; dates use YYYY-MM-DD.

Example:
{example}"""


def build_request(
    endpoint: ModelEndpoint,
    mode: str,
    system_prompt: str,
    image_b64: str,
) -> Dict[str, Any]:
    return {
        "model": endpoint.model_name,
        "messages": [
            {"role": "system", "content": system_prompt},
            {
                "role": "user",
                "content": [
                    {
                        "type": "text",
                        "text": f"Parse this contract image using {mode}. "
                                "Extract strictly by the field regions.",
                    },
                    {
                        "type": "image_url",
                        "image_url": {"url": jpeg_data_url(image_b64), "detail": endpoint.image_detail},
                    },
                ],
            },
        ],
        "temperature": endpoint.temperature,
        "max_tokens": endpoint.max_tokens,
    }


def message_content(data: Any, engine: str = "") -> str:
    """Pull choices[0].message.content out of a chat-completions body."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise MalformedResponseError(
            f"[{engine}] reply has no choices[0].message.content", engine=engine
        ) from e

    # some gateways return content as a list of typed parts
    if isinstance(content, list):
        content = "".join(
            part.get("text", "") for part in content
            if isinstance(part, Mapping) and part.get("type") in (None, "text")
        )
    if not isinstance(content, str):
        raise MalformedResponseError(f"[{engine}] message content is not text", engine=engine)
    return content


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------
class ExtractionClient:
    """
    Runs the fast and precise engines concurrently against one endpoint and
    merges their normalized replies into an OCRResult.
    """

    def __init__(self, endpoint: ModelEndpoint, sample_count: int = 3):
        self.endpoint = endpoint
        self.sample_count = sample_count

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.endpoint.api_key:
            headers["Authorization"] = f"Bearer {self.endpoint.api_key}"
        return headers

    async def _post(self, session: aiohttp.ClientSession, engine: str, body: Dict[str, Any]) -> str:
        try:
            async with session.post(self.endpoint.url, json=body, headers=self._headers()) as resp:
                status = resp.status
                text = await resp.text()
        except aiohttp.ClientError as e:
            raise TransportError(f"[{engine}] request to model endpoint failed: {e!r}", engine=engine) from e

        if not 200 <= status < 300:
            snippet = text[:BODY_SNIPPET]
            logger.warning("%s engine got HTTP %s: %s", engine, status, snippet)
            raise TransportError(
                f"[{engine}] model endpoint returned {status}: {snippet}",
                engine=engine,
                status_code=status,
            )

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"[{engine}] response body is not JSON", engine=engine) from e
        return message_content(data, engine)

    async def _call(
        self,
        session: aiohttp.ClientSession,
        engine: str,
        system_prompt: str,
        image_b64: str,
        expected_keys: List[str],
        label_to_key: Dict[str, str],
    ) -> NormalizedResponse:
        body = build_request(self.endpoint, ENGINE_MODES[engine], system_prompt, image_b64)
        try:
            content = await asyncio.wait_for(self._post(session, engine, body), timeout=self.endpoint.timeout_s)
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"[{engine}] no reply within {self.endpoint.timeout_s:g}s", engine=engine
            ) from e

        try:
            return normalize(content, expected_keys, label_to_key)
        except MalformedResponseError as e:
            logger.warning("%s engine reply could not be parsed: %s", engine, content[:BODY_SNIPPET])
            raise MalformedResponseError(f"[{engine}] {e}", engine=engine) from e

    async def _run_pair(self, session: aiohttp.ClientSession, *args) -> Tuple[NormalizedResponse, NormalizedResponse]:
        fast = asyncio.create_task(self._call(session, FAST, *args), name="extract-fast")
        precise = asyncio.create_task(self._call(session, PRECISE, *args), name="extract-precise")
        try:
            await asyncio.wait({fast, precise}, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            # fail fast: whichever call is still running is abandoned
            for t in (fast, precise):
                if not t.done():
                    t.cancel()
            await asyncio.gather(fast, precise, return_exceptions=True)

        for t in (fast, precise):
            if not t.cancelled() and t.exception() is not None:
                raise t.exception()
        return fast.result(), precise.result()

    async def extract(
        self,
        image_b64: str,
        roi_config: ROIConfig,
        recent_samples: Sequence[TrainingSample] = (),
    ) -> OCRResult:
        """
        One extraction = two concurrent model calls. If either fails the whole
        extraction fails; there is no single-engine result.
        """
        start = time.perf_counter()
        system_prompt = build_system_prompt(roi_config, recent_samples, self.sample_count)
        args = (system_prompt, image_b64, roi_config.field_keys(), roi_config.label_to_key())

        timeout = aiohttp.ClientTimeout(total=self.endpoint.timeout_s)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            fast, precise = await self._run_pair(session, *args)

        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.info("Dual-engine extraction finished in %d ms", latency_ms)

        return OCRResult(
            ok=True,
            quality=precise.quality or fast.quality or QualityReport(),
            primary_fields=fast.fields,
            secondary_fields=precise.fields,
            warnings=[*fast.warnings, *precise.warnings],
            latency_ms=latency_ms,
        )
