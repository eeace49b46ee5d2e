from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ExternalServiceError, ExternalTimeoutError
from app.services import settings_store

logger = logging.getLogger(__name__)

APIFY_BASE = "https://api.apify.com/v2"
APIFY_ACTOR_RUN_URL = "/acts/{actor_id}/runs"
APIFY_RUN_STATUS_URL = "/actor-runs/{run_id}"
APIFY_DATASET_ITEMS_URL = "/datasets/{dataset_id}/items"

TERMINAL_FAILURE_STATUSES = {"FAILED", "ABORTED", "TIMED-OUT"}
SUCCEEDED = "SUCCEEDED"


def _normalize_actor_id(actor_id: str) -> str:
    """Apify expects username~actor-name."""
    if "~" in actor_id:
        return actor_id
    if "/" in actor_id:
        return actor_id.replace("/", "~", 1)
    return actor_id


@dataclass
class RunStatus:
    status: str
    dataset_id: str | None = None
    error_message: str | None = None


class ApifyClient:
    """Async Apify run API: start a run, poll it, read its dataset."""

    def __init__(
        self,
        token: str,
        *,
        base_url: str = APIFY_BASE,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_s, transport=self._transport)

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        params = {"token": self.token, **kwargs.pop("params", {})}
        async with self._client() as client:
            try:
                resp = await client.request(method, path, params=params, **kwargs)
            except httpx.HTTPError as exc:
                raise ExternalServiceError("apify", f"{method} {path} failed: {exc}") from exc
        if resp.status_code >= 400:
            raise ExternalServiceError(
                "apify", f"{method} {path} failed", status_code=resp.status_code, body=resp.text
            )
        return resp.json()

    async def start_run(self, actor_id: str, payload: dict[str, Any]) -> str:
        normalized_id = _normalize_actor_id(actor_id)
        data = await self._request(
            "POST",
            APIFY_ACTOR_RUN_URL.format(actor_id=normalized_id),
            params={"waitForFinish": 0},
            json=payload,
        )
        run_id = (data.get("data") or {}).get("id")
        if not run_id:
            raise ExternalServiceError("apify", f"run id missing for actor {normalized_id}")
        return run_id

    async def get_run(self, run_id: str) -> RunStatus:
        data = (await self._request("GET", APIFY_RUN_STATUS_URL.format(run_id=run_id))).get("data") or {}
        return RunStatus(
            status=data.get("status") or "UNKNOWN",
            dataset_id=data.get("defaultDatasetId"),
            error_message=data.get("errorMessage"),
        )

    async def get_dataset_items(self, dataset_id: str, *, clean: bool = True) -> list[dict]:
        items = await self._request(
            "GET",
            APIFY_DATASET_ITEMS_URL.format(dataset_id=dataset_id),
            params={"clean": "true" if clean else "false"},
        )
        if not isinstance(items, list):
            raise ExternalServiceError("apify", f"invalid dataset response for {dataset_id}", body=str(items))
        return items

    async def wait_for_run(self, run_id: str, *, max_wait_s: float, poll_interval_s: float) -> str:
        """Poll until the run is terminal; returns the dataset id on success."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max_wait_s
        while loop.time() < deadline:
            await asyncio.sleep(poll_interval_s)
            run = await self.get_run(run_id)
            if run.status == SUCCEEDED:
                if not run.dataset_id:
                    raise ExternalServiceError("apify", f"run {run_id} succeeded without a dataset")
                return run.dataset_id
            if run.status in TERMINAL_FAILURE_STATUSES:
                raise ExternalServiceError(
                    "apify", f"run {run_id} ended with status: {run.status}", body=run.error_message
                )
            logger.debug(f"[apify] run {run_id} status {run.status}")
        raise ExternalTimeoutError("apify", f"run {run_id} timed out after {max_wait_s:.0f}s")


_client: ApifyClient | None = None


async def get_apify_client(session: AsyncSession) -> ApifyClient:
    if _client is not None:
        return _client
    token = await settings_store.get_credential(session, settings_store.APIFY_TOKEN)
    return ApifyClient(token)


def set_apify_client(client: ApifyClient | None) -> None:
    global _client
    _client = client
