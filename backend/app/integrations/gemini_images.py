"""
Slide image rendering via the Gemini ``generateContent`` REST endpoint.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ExternalServiceError, sanitize
from app.services import settings_store
from app.settings import get_settings

logger = logging.getLogger(__name__)

GEMINI_BASE = "https://generativelanguage.googleapis.com/v1beta"


@dataclass
class RenderedImage:
    image_base64: str
    mime_type: str = "image/png"


class ImageRenderer(ABC):
    @abstractmethod
    async def render(self, prompt: str) -> RenderedImage:
        ...


def build_slide_prompt(text: str, slide_number: int, total_slides: int, brand_colors: str | None = None) -> str:
    colors = (
        f"Use these brand colors: {brand_colors}."
        if brand_colors
        else "Use a modern, clean color palette with dark background and bright accents."
    )
    return (
        "Create a visually stunning Instagram carousel slide image (1080x1350 pixels, 4:5 portrait ratio).\n\n"
        "TEXT REQUIREMENTS:\n"
        f'- Display this text prominently in the center: "{text}"\n'
        "- Respect the script's natural direction (right-to-left scripts must render RTL)\n"
        "- Bold, modern sans-serif font; large, clear and easily readable\n\n"
        "DESIGN REQUIREMENTS:\n"
        f"- Slide {slide_number} of {total_slides}\n"
        f"- {colors}\n"
        "- Premium social media aesthetic, clean typography, good contrast\n"
        "- No watermarks or logos"
    )


def build_cta_prompt(text: str, handle: str, brand_colors: str | None = None) -> str:
    colors = f"Use these brand colors: {brand_colors}." if brand_colors else "Use warm amber/orange accents on dark background."
    return (
        "Create a compelling Call-to-Action slide for an Instagram carousel (1080x1350 pixels, 4:5 portrait ratio).\n\n"
        f'- Display this CTA text: "{text}"\n'
        f"- Below the CTA, show the Instagram handle: @{handle}\n"
        "- Include a visual follow or swipe arrow indicator\n"
        f"- {colors}\n"
        "- This is the LAST slide; it should feel like a conclusion"
    )


def build_retry_prompt(text: str, attempt: int) -> str:
    """Simpler prompts for later attempts: 2 drops design detail, 3+ is minimal."""
    if attempt == 2:
        return (
            "Create an Instagram slide image (1080x1350, portrait). "
            f'Display this text clearly in the center on a dark background: "{text}"'
        )
    return f'Image with text: "{text}". Dark background, white text, 1080x1350 portrait format.'


class GeminiImageRenderer(ImageRenderer):
    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gemini-3-pro-image-preview",
        base_url: str = GEMINI_BASE,
        timeout_s: float = 180.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    async def render(self, prompt: str) -> RenderedImage:
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": {"aspectRatio": "4:5"},
            },
        }
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_s, transport=self._transport) as client:
            try:
                resp = await client.post(
                    f"/models/{self.model}:generateContent",
                    headers={"x-goog-api-key": self.api_key},
                    json=body,
                )
            except httpx.HTTPError as exc:
                raise ExternalServiceError("gemini", sanitize(f"generateContent failed: {exc}")) from exc

        if resp.status_code >= 400:
            raise ExternalServiceError("gemini", "generateContent failed", status_code=resp.status_code, body=sanitize(resp.text))

        candidates = resp.json().get("candidates") or []
        if not candidates:
            raise ExternalServiceError("gemini", "no candidates in response")
        for part in (candidates[0].get("content") or {}).get("parts") or []:
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                return RenderedImage(
                    image_base64=inline["data"],
                    mime_type=inline.get("mimeType") or inline.get("mime_type") or "image/png",
                )
        raise ExternalServiceError("gemini", "no image data found in response")


_renderer: ImageRenderer | None = None


async def get_image_renderer(session: AsyncSession) -> ImageRenderer:
    if _renderer is not None:
        return _renderer
    api_key = await settings_store.get_credential(session, settings_store.GEMINI_API_KEY)
    return GeminiImageRenderer(api_key, model=get_settings().gemini_image_model)


def set_image_renderer(renderer: ImageRenderer | None) -> None:
    global _renderer
    _renderer = renderer
