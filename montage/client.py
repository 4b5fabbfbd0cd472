"""HTTP client for the montage render API."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from montage.config import get_settings
from montage.schemas.render import VIDEO_RENDERING

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = frozenset({"PENDING", "PROCESSING"})

ProgressCallback = Callable[[dict[str, Any]], Awaitable[None] | None]


class RenderClientError(Exception):
    """Non-2xx response from the render API."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


class RenderClient:
    """Submits render jobs and polls them to completion.

    Usage::

        async with RenderClient() as client:
            job = await client.submit(design, {"fps": 30, "format": "mp4"})
            final = await client.wait_for_completion(job["id"])
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        poll_interval: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.poll_interval = settings.poll_interval_s if poll_interval is None else poll_interval
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout or settings.request_timeout_s,
            transport=transport,
        )

    async def __aenter__(self) -> "RenderClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _video(resp: httpx.Response) -> dict[str, Any]:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.is_error:
            raise RenderClientError(resp.status_code, body.get("error") or resp.reason_phrase)
        return body["video"]

    async def submit(self, design: dict[str, Any], options: dict[str, Any]) -> dict[str, Any]:
        """Start a render job and return its PENDING status."""
        resp = await self._client.post("/api/render", json={"design": design, "options": options})
        return self._video(resp)

    async def get_status(self, job_id: str) -> dict[str, Any]:
        """Get render job status."""
        resp = await self._client.get(
            "/api/render", params={"id": job_id, "type": VIDEO_RENDERING}
        )
        return self._video(resp)

    async def cancel(self, job_id: str) -> dict[str, Any]:
        """Request cancellation of a render job."""
        resp = await self._client.delete(f"/api/render/{job_id}")
        return self._video(resp)

    async def wait_for_completion(
        self,
        job_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        """
        Poll until the job leaves PENDING/PROCESSING.

        Args:
            job_id: Render job id
            on_progress: Called with every status received, sync or async

        Returns:
            The terminal status (COMPLETED, ERROR, CANCELLED or TIMEOUT)
        """
        while True:
            video = await self.get_status(job_id)
            if on_progress is not None:
                result = on_progress(video)
                if asyncio.iscoroutine(result):
                    await result
            if video["status"] not in ACTIVE_STATUSES:
                logger.info(f"[CLIENT] Render job {job_id} finished: {video['status']}")
                return video
            await asyncio.sleep(self.poll_interval)
