"""
Carousel publishing over the Graph API container protocol.

    1. one child container per image (is_carousel_item)
    2. poll each child until FINISHED (ERROR / EXPIRED abort)
    3. parent CAROUSEL container with children + caption
    4. poll the parent the same way
    5. media_publish the parent -> published media id

Strictly sequential; any failure aborts the whole publish and nothing is
returned for the partial work.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.errors import ExternalServiceError, ExternalTimeoutError, PreconditionError, sanitize
from app.settings import get_settings

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com/v22.0"
MIN_CAROUSEL_IMAGES = 2
MAX_CAROUSEL_IMAGES = 10

STATUS_FINISHED = "FINISHED"
STATUS_ERROR = "ERROR"
STATUS_EXPIRED = "EXPIRED"


@dataclass
class CarouselPublishResult:
    published_media_id: str
    parent_container_id: str
    child_container_ids: list[str] = field(default_factory=list)


class MetaGraphPublisher:
    platform = "Instagram"

    def __init__(
        self,
        *,
        base_url: str = GRAPH_API_BASE,
        poll_interval_s: float = 5.0,
        max_wait_s: float = 60.0,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.poll_interval_s = poll_interval_s
        self.max_wait_s = max_wait_s
        self.timeout_s = timeout_s
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_s, transport=self._transport)

    async def _call(self, client: httpx.AsyncClient, method: str, path: str, params: dict[str, Any], step: str) -> dict:
        try:
            resp = await client.request(method, path, params=params)
        except httpx.HTTPError as exc:
            raise ExternalServiceError("meta", sanitize(f"{step} failed: {exc}")) from exc
        if resp.status_code >= 400:
            raise ExternalServiceError("meta", f"{step} failed", status_code=resp.status_code, body=sanitize(resp.text))
        return resp.json()

    async def create_child_container(self, client: httpx.AsyncClient, ig_user_id: str, access_token: str, image_url: str) -> str:
        data = await self._call(
            client,
            "POST",
            f"/{ig_user_id}/media",
            {"image_url": image_url, "is_carousel_item": "true", "access_token": access_token},
            "child container creation",
        )
        return str(data["id"])

    async def wait_for_container(self, client: httpx.AsyncClient, container_id: str, access_token: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_wait_s
        while loop.time() < deadline:
            data = await self._call(
                client,
                "GET",
                f"/{container_id}",
                {"fields": "status_code", "access_token": access_token},
                "status poll",
            )
            status_code = data.get("status_code")
            if status_code == STATUS_FINISHED:
                return
            if status_code in (STATUS_ERROR, STATUS_EXPIRED):
                raise ExternalServiceError("meta", f"container {container_id} status: {status_code}")
            await asyncio.sleep(self.poll_interval_s)
        raise ExternalTimeoutError("meta", f"container {container_id} polling timed out after {self.max_wait_s:.0f}s")

    async def create_carousel_container(
        self,
        client: httpx.AsyncClient,
        ig_user_id: str,
        access_token: str,
        child_container_ids: list[str],
        caption: str,
    ) -> str:
        data = await self._call(
            client,
            "POST",
            f"/{ig_user_id}/media",
            {
                "media_type": "CAROUSEL",
                "children": ",".join(child_container_ids),
                "caption": caption,
                "access_token": access_token,
            },
            "carousel container creation",
        )
        return str(data["id"])

    async def publish_container(self, client: httpx.AsyncClient, ig_user_id: str, access_token: str, creation_id: str) -> str:
        data = await self._call(
            client,
            "POST",
            f"/{ig_user_id}/media_publish",
            {"creation_id": creation_id, "access_token": access_token},
            "publish",
        )
        return str(data["id"])

    async def publish_carousel(
        self,
        ig_user_id: str,
        access_token: str,
        image_urls: list[str],
        caption: str,
    ) -> CarouselPublishResult:
        if len(image_urls) < MIN_CAROUSEL_IMAGES:
            raise PreconditionError(f"Carousel requires at least {MIN_CAROUSEL_IMAGES} images")
        if len(image_urls) > MAX_CAROUSEL_IMAGES:
            raise PreconditionError(f"Carousel supports max {MAX_CAROUSEL_IMAGES} images")

        async with self._client() as client:
            child_ids: list[str] = []
            for url in image_urls:
                child_ids.append(await self.create_child_container(client, ig_user_id, access_token, url))
            logger.info(f"[meta] {len(child_ids)} child containers created for {ig_user_id}")

            for child_id in child_ids:
                await self.wait_for_container(client, child_id, access_token)

            parent_id = await self.create_carousel_container(client, ig_user_id, access_token, child_ids, caption)
            await self.wait_for_container(client, parent_id, access_token)

            media_id = await self.publish_container(client, ig_user_id, access_token, parent_id)
            logger.info(f"[meta] carousel {parent_id} published as {media_id}")

        return CarouselPublishResult(
            published_media_id=media_id,
            parent_container_id=parent_id,
            child_container_ids=child_ids,
        )


_publisher: MetaGraphPublisher | None = None


def get_publisher() -> MetaGraphPublisher:
    if _publisher is not None:
        return _publisher
    settings = get_settings()
    return MetaGraphPublisher(
        base_url=settings.graph_api_base,
        poll_interval_s=settings.container_poll_interval_sec,
        max_wait_s=settings.container_max_wait_sec,
    )


def set_publisher(publisher: MetaGraphPublisher | None) -> None:
    global _publisher
    _publisher = publisher
