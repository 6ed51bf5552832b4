"""HTTP client for the external signal processing service."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .base import ExternalJobClient, JobHandle, JobStatus

logger = logging.getLogger(__name__)


class HttpExternalJobClient(ExternalJobClient):
    """Talk to the processor's REST API.

    Endpoints: ``POST /jobs``, ``GET /jobs/{id}``, ``GET /jobs/{id}/result``
    and ``POST /jobs/{id}/cancel``. Non-2xx responses raise
    ``httpx.HTTPStatusError``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout, transport=transport
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def submit(self, reference: str, metadata: Dict[str, Any]) -> JobHandle:
        response = await self._client.post(
            "/jobs", json={"reference": reference, "metadata": metadata}
        )
        response.raise_for_status()
        body = response.json()
        logger.debug(f"Submitted {reference} as job {body.get('job_id')}")
        return JobHandle.model_validate(body)

    async def poll(self, handle: JobHandle) -> JobStatus:
        response = await self._client.get(f"/jobs/{handle.job_id}")
        response.raise_for_status()
        body = response.json()
        body.setdefault("job_id", handle.job_id)
        return JobStatus.model_validate(body)

    async def fetch_result(self, handle: JobHandle) -> Dict[str, Any]:
        response = await self._client.get(f"/jobs/{handle.job_id}/result")
        response.raise_for_status()
        return response.json()

    async def cancel(self, handle: JobHandle) -> None:
        response = await self._client.post(f"/jobs/{handle.job_id}/cancel")
        response.raise_for_status()
