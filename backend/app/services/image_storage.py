from __future__ import annotations

import base64
import logging
from pathlib import Path

from app.settings import get_settings

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/images"


def carousel_dir(shortcode: str) -> Path:
    return Path(get_settings().images_dir) / "carousels" / shortcode


def save_slide_image(shortcode: str, slide_number: int, image_base64: str) -> str:
    """Write a base64 PNG under images_dir and return its public path."""
    target_dir = carousel_dir(shortcode)
    target_dir.mkdir(parents=True, exist_ok=True)

    filename = f"slide_{slide_number}.png"
    (target_dir / filename).write_bytes(base64.b64decode(image_base64))
    logger.debug(f"[images] saved {shortcode}/{filename}")
    return f"{PUBLIC_PREFIX}/carousels/{shortcode}/{filename}"
