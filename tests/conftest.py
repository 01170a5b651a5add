from __future__ import annotations

import asyncio
import inspect
import json
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, List, Mapping

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from PIL import Image, ImageDraw

from contract_ocr.models.ocr import ModelEndpoint
from contract_ocr.models.roi import load_roi_config
from contract_ocr.services.extraction_client import ENGINE_MODES, FAST, PRECISE


FIVE_FIELDS = {
    "template_size_hint": [1280, 1759],
    "fields": {
        "agreement_no": {"label": "合同编号", "coords": [0.672, 0.030, 0.981, 0.074]},
        "phone": {"label": "联系电话", "coords": [0.672, 0.132, 0.981, 0.179]},
        "member_name": {"label": "会员姓名", "coords": [0.203, 0.168, 0.438, 0.207]},
        "price": {"label": "合同单价", "coords": [0.195, 0.410, 0.305, 0.517]},
        "processing_date": {"label": "办理日期", "coords": [0.664, 0.637, 0.970, 0.674]},
    },
}

PRECISE_VALUES = {
    "agreement_no": "HT-2024-0153",
    "phone": "13800138000",
    "member_name": "张三",
    "price": "3600",
    "processing_date": "2024-05-01",
}

# fast engine disagrees on exactly one field
FAST_VALUES = dict(PRECISE_VALUES, price="3800")


def fields_payload(values: Dict[str, str], conf: float = 0.95) -> Dict[str, Any]:
    return {k: {"value": v, "conf": conf, "raw": v} for k, v in values.items()}


def chat_body(content: str) -> Dict[str, Any]:
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]}


def engine_of(body: Dict[str, Any]) -> str:
    text = body["messages"][1]["content"][0]["text"]
    return FAST if ENGINE_MODES[FAST] in text else PRECISE


@dataclass
class SeenRequest:
    headers: Mapping[str, str]
    body: Dict[str, Any]


@pytest.fixture
def roi_config():
    return load_roi_config(FIVE_FIELDS)


@pytest.fixture
def contract_jpeg() -> bytes:
    """A 2000x1500 'photo' with some printed lines on it."""
    img = Image.new("RGB", (2000, 1500), color=(245, 245, 240))
    draw = ImageDraw.Draw(img)
    for y in range(100, 1400, 60):
        draw.line([(80, y), (1920, y)], fill=(20, 20, 20), width=3)
        draw.text((100, y - 30), "Contract No. HT-2024-0153", fill=(0, 0, 0))
    buf = BytesIO()
    img.save(buf, format="JPEG", quality=90)
    return buf.getvalue()


class FakeModel:
    """
    Local chat-completions server for the extraction tests.

    `fast` / `precise` are either field-value dicts or callables taking the
    parsed request body and returning a web.Response (sync or async).
    """

    def __init__(self, fast=None, precise=None, quality=None):
        self.fast = FAST_VALUES if fast is None else fast
        self.precise = PRECISE_VALUES if precise is None else precise
        self.quality = quality
        self.seen: List[SeenRequest] = []
        self._release = asyncio.Event()

        app = web.Application()
        app.router.add_post("/v1/chat/completions", self._handle)
        self.server = TestServer(app)

    async def start(self) -> None:
        await self.server.start_server()

    async def close(self) -> None:
        self._release.set()
        await self.server.close()

    def endpoint(self, **overrides: Any) -> ModelEndpoint:
        params: Dict[str, Any] = {
            "url": str(self.server.make_url("/v1")),
            "api_key": "sk-test",
            "model_name": "test-vl",
            "timeout_s": 5,
        }
        params.update(overrides)
        return ModelEndpoint(**params)

    async def hold(self) -> None:
        """Park a handler until the server shuts down."""
        await self._release.wait()

    async def _handle(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.seen.append(SeenRequest(headers=request.headers.copy(), body=body))

        engine = engine_of(body)
        spec = self.fast if engine == FAST else self.precise
        if callable(spec):
            resp = spec(body)
            if inspect.isawaitable(resp):
                resp = await resp
            return resp

        payload: Dict[str, Any] = {"fields": fields_payload(spec), "warnings": [f"{engine}-ok"]}
        if self.quality is not None and engine == PRECISE:
            payload["quality"] = self.quality
        return web.json_response(chat_body(json.dumps(payload, ensure_ascii=False)))


@pytest_asyncio.fixture
async def fake_model():
    started: List[FakeModel] = []

    async def factory(fast=None, precise=None, quality=None) -> FakeModel:
        model = FakeModel(fast, precise, quality)
        await model.start()
        started.append(model)
        return model

    yield factory

    for model in started:
        await model.close()
