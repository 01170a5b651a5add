import asyncio
import json
import time

import pytest
from aiohttp import web
from conftest import FAST_VALUES, PRECISE_VALUES, chat_body, engine_of, fields_payload

from contract_ocr.core.errors import MalformedResponseError, TransportError
from contract_ocr.models.ocr import ModelEndpoint, QualityReport
from contract_ocr.models.records import TrainingSample
from contract_ocr.services.extraction_client import (
    FAST,
    PRECISE,
    ExtractionClient,
    build_correction_context,
    message_content,
)

IMAGE_B64 = "aGVsbG8="

QUALITY = {
    "ok": False,
    "metrics": {"blur_var": 42.5, "brightness_mean": 150, "dark_ratio": 0.02},
    "warnings": ["slightly blurry"],
}


def _ok(values, engine):
    payload = {"fields": fields_payload(values), "warnings": [f"{engine}-ok"]}
    return web.json_response(chat_body(json.dumps(payload, ensure_ascii=False)))


def _sample(n, corrections):
    return TrainingSample(id=f"s{n}", timestamp=1_700_000_000_000 + n, corrections=corrections, accuracy=80)


@pytest.mark.asyncio
async def test_both_engines_are_merged(fake_model, roi_config):
    model = await fake_model(quality=QUALITY)
    client = ExtractionClient(model.endpoint())

    result = await client.extract(IMAGE_B64, roi_config)

    assert len(model.seen) == 2
    assert {engine_of(r.body) for r in model.seen} == {FAST, PRECISE}
    assert result.ok is True
    assert result.primary_fields["price"].value == "3800"
    assert result.secondary_fields["price"].value == "3600"
    assert set(result.primary_fields) == set(roi_config.fields)
    assert set(result.secondary_fields) == set(roi_config.fields)
    assert result.warnings == ["fast-ok", "precise-ok"]
    assert result.quality.ok is False
    assert result.quality.metrics.blur_var == 42.5
    assert result.latency_ms >= 0


@pytest.mark.asyncio
async def test_missing_quality_falls_back_to_default(fake_model, roi_config):
    model = await fake_model()
    result = await ExtractionClient(model.endpoint()).extract(IMAGE_B64, roi_config)
    assert result.quality == QualityReport()
    assert result.quality.ok is True


@pytest.mark.asyncio
async def test_requests_carry_image_auth_and_schema(fake_model, roi_config):
    model = await fake_model()
    endpoint = model.endpoint()
    await ExtractionClient(endpoint).extract(IMAGE_B64, roi_config)

    for seen in model.seen:
        assert seen.headers["Authorization"] == "Bearer sk-test"

        body = seen.body
        assert body["model"] == "test-vl"
        assert body["temperature"] == endpoint.temperature
        assert body["max_tokens"] == endpoint.max_tokens
        system, user = body["messages"]
        assert system["role"] == "system"
        for key, field in roi_config.fields.items():
            assert key in system["content"]
            assert field.label in system["content"]
        image = user["content"][1]["image_url"]
        assert image["url"] == f"data:image/jpeg;base64,{IMAGE_B64}"
        assert image["detail"] == "high"


@pytest.mark.asyncio
async def test_no_auth_header_without_api_key(fake_model, roi_config):
    model = await fake_model()
    await ExtractionClient(model.endpoint(api_key="")).extract(IMAGE_B64, roi_config)
    assert all("Authorization" not in seen.headers for seen in model.seen)


@pytest.mark.asyncio
async def test_recent_corrections_reach_the_prompt(fake_model, roi_config):
    model = await fake_model()
    samples = [_sample(i, {"price": str(1000 + i)}) for i in range(5)]
    client = ExtractionClient(model.endpoint(), sample_count=3)

    await client.extract(IMAGE_B64, roi_config, samples)

    prompt = model.seen[0].body["messages"][0]["content"]
    assert '{"price": "1004"}' in prompt
    assert '{"price": "1002"}' in prompt
    assert '{"price": "1001"}' not in prompt


def test_correction_context_is_empty_without_samples():
    assert build_correction_context([], 3) == ""
    assert build_correction_context([_sample(1, {"a": "b"})], 0) == ""


@pytest.mark.asyncio
async def test_engines_run_concurrently(fake_model, roi_config):
    arrived = []
    both_in_flight = asyncio.Event()

    async def gate(body):
        arrived.append(engine_of(body))
        if len(arrived) == 2:
            both_in_flight.set()
        # a sequential client would never get the second call in
        await asyncio.wait_for(both_in_flight.wait(), timeout=2)
        engine = engine_of(body)
        return _ok(FAST_VALUES if engine == FAST else PRECISE_VALUES, engine)

    model = await fake_model(fast=gate, precise=gate)
    result = await ExtractionClient(model.endpoint()).extract(IMAGE_B64, roi_config)

    assert sorted(arrived) == sorted([FAST, PRECISE])
    assert result.secondary_fields["phone"].value == PRECISE_VALUES["phone"]


@pytest.mark.asyncio
async def test_non_2xx_fails_with_status_and_truncated_body(fake_model, roi_config):
    model = await fake_model(precise=lambda body: web.Response(status=503, text="x" * 1000))

    with pytest.raises(TransportError) as exc_info:
        await ExtractionClient(model.endpoint()).extract(IMAGE_B64, roi_config)

    err = exc_info.value
    assert err.engine == PRECISE
    assert err.status_code == 503
    assert "503" in str(err)
    assert "x" * 200 in str(err)
    assert "x" * 201 not in str(err)


@pytest.mark.asyncio
async def test_one_failure_does_not_wait_for_the_other(fake_model, roi_config):
    model = None

    async def stuck(body):
        await model.hold()
        return _ok(PRECISE_VALUES, PRECISE)

    model = await fake_model(
        fast=lambda body: web.Response(status=500, text="upstream exploded"),
        precise=stuck,
    )
    endpoint = model.endpoint(timeout_s=10)

    start = time.perf_counter()
    with pytest.raises(TransportError) as exc_info:
        await ExtractionClient(endpoint).extract(IMAGE_B64, roi_config)

    assert exc_info.value.engine == FAST
    assert exc_info.value.status_code == 500
    # the precise call was abandoned, not awaited to its deadline
    assert time.perf_counter() - start < 5


@pytest.mark.asyncio
async def test_slow_engine_hits_the_deadline(fake_model, roi_config):
    model = None

    async def slow(body):
        await model.hold()
        return _ok(PRECISE_VALUES, PRECISE)

    model = await fake_model(precise=slow)

    with pytest.raises(TransportError) as exc_info:
        await ExtractionClient(model.endpoint(timeout_s=0.2)).extract(IMAGE_B64, roi_config)

    assert exc_info.value.engine == PRECISE
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_unreachable_endpoint_is_a_transport_error(roi_config):
    endpoint = ModelEndpoint(url="http://127.0.0.1:1/v1", model_name="m", timeout_s=5)
    with pytest.raises(TransportError) as exc_info:
        await ExtractionClient(endpoint).extract(IMAGE_B64, roi_config)
    assert exc_info.value.engine in (FAST, PRECISE)


@pytest.mark.asyncio
@pytest.mark.parametrize("make_response", [
    lambda: web.json_response(chat_body("Sorry, I cannot read this image.")),
    lambda: web.json_response({"choices": []}),
    lambda: web.Response(text="<html>gateway</html>", content_type="text/html"),
    lambda: web.json_response(chat_body('{"fields": ["not", "an", "object"]}')),
])
async def test_unusable_reply_is_malformed(fake_model, roi_config, make_response):
    model = await fake_model(fast=lambda body: make_response())
    with pytest.raises(MalformedResponseError) as exc_info:
        await ExtractionClient(model.endpoint()).extract(IMAGE_B64, roi_config)
    assert exc_info.value.engine == FAST


def test_content_parts_are_joined():
    data = {"choices": [{"message": {"content": [
        {"type": "text", "text": '{"fields": '},
        {"type": "text", "text": "{}}"},
    ]}}]}
    assert message_content(data) == '{"fields": {}}'
