import base64
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from app.errors import ExternalServiceError
from app.integrations.gemini_images import GeminiImageRenderer, build_retry_prompt
from app.services.image_storage import save_slide_image
from app.services.llm_provider import OpenAILLMProvider


def _openai_client(content: str) -> MagicMock:
    completion = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=completion)
    return client


async def test_match_topics_parses_json_and_skips_malformed():
    client = _openai_client(json.dumps({
        "matches": [
            {"destination_id": 1, "score": 82, "reason": "fitness tips"},
            {"destination_id": "2", "score": "55", "reason": "food"},
            {"score": 90},
        ]
    }))
    provider = OpenAILLMProvider("key", client=client)

    matches = await provider.match_topics("caption", [(1, "fitness"), (2, "food")])
    assert [(m.destination_id, m.score) for m in matches] == [(1, 82.0), (2, 55.0)]

    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert "ID 1: fitness" in kwargs["messages"][0]["content"]


async def test_adapt_caption_passes_feedback():
    client = _openai_client(json.dumps({"slides": ["one", "two", ""], "quality_score": 6}))
    provider = OpenAILLMProvider("key", client=client, language="Hebrew")

    result = await provider.adapt_caption("source", feedback="Previous score: 5/10.")
    assert result.slides == ["one", "two"]
    assert result.quality_score == 6.0
    system = client.chat.completions.create.await_args.kwargs["messages"][0]["content"]
    assert "Previous score: 5/10." in system


async def test_adapt_caption_rejects_invalid_json():
    provider = OpenAILLMProvider("key", client=_openai_client("not json"))
    with pytest.raises(ExternalServiceError):
        await provider.adapt_caption("source")


async def test_gemini_renderer_extracts_inline_image():
    payload = base64.b64encode(b"png-bytes").decode()
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["key"] = request.headers.get("x-goog-api-key")
        return httpx.Response(200, json={
            "candidates": [{"content": {"parts": [{"text": "here"}, {"inlineData": {"mimeType": "image/png", "data": payload}}]}}]
        })

    renderer = GeminiImageRenderer("g-key", model="img-model", transport=httpx.MockTransport(handler))
    image = await renderer.render("prompt")
    assert image.image_base64 == payload
    assert seen["path"].endswith("/models/img-model:generateContent")
    assert seen["key"] == "g-key"


async def test_gemini_renderer_without_image_fails():
    def handler(request):
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "sorry"}]}}]})

    renderer = GeminiImageRenderer("g-key", transport=httpx.MockTransport(handler))
    with pytest.raises(ExternalServiceError, match="no image data"):
        await renderer.render("prompt")


def test_retry_prompts_get_simpler():
    second = build_retry_prompt("hello", 2)
    third = build_retry_prompt("hello", 3)
    assert "hello" in second and "hello" in third
    assert len(third) < len(second)


def test_save_slide_image_writes_under_images_dir(images_dir):
    path = save_slide_image("ABC123", 2, base64.b64encode(b"\x89PNG").decode())
    assert path == "/images/carousels/ABC123/slide_2.png"
    assert (images_dir / "carousels" / "ABC123" / "slide_2.png").read_bytes() == b"\x89PNG"
