"""
FASHN Render Service
Virtual try-on through the FASHN API: submit a run, poll its status, fetch the output.

Every failed submission attempt (connection error or any non-2xx response)
is retried inside this service with exponential backoff. Only when those
attempts are exhausted does a call raise ExternalServiceError, which costs the
render job one of its own retries.
"""

import logging
import time
import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from modelsnap.core.config import settings
from modelsnap.core.exceptions import ExternalServiceError
from modelsnap.workers.base import NonRetryableError, RetryableError, with_retry

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = ("succeeded", "completed")
FAILURE_STATUSES = ("failed", "canceled")


@dataclass
class RenderResult:
    external_id: str
    output_url: str


def resolve_image_url(ref: str, base_url: Optional[str] = None) -> str:
    """Absolutize an image reference; the render service only fetches absolute URLs."""
    if ref.startswith(("http://", "https://", "data:")):
        return ref
    base = (base_url or settings.API_BASE_URL).rstrip("/")
    if ref.startswith("/"):
        return f"{base}{ref}"
    return f"{base}/{ref}"


class FashnRenderService:
    """Client for the FASHN try-on API (tryon-v1.6)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        poll_interval: Optional[float] = None,
        max_wait: Optional[float] = None,
        submit_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.FASHN_API_KEY
        self.base_url = (base_url or settings.FASHN_API_BASE_URL).rstrip("/")
        self.poll_interval = settings.RENDER_POLL_INTERVAL if poll_interval is None else poll_interval
        self.max_wait = settings.RENDER_MAX_WAIT_TIME if max_wait is None else max_wait
        self.submit_retries = settings.RENDER_SUBMIT_RETRIES if submit_retries is None else submit_retries
        self.backoff_base = settings.RENDER_BACKOFF_BASE if backoff_base is None else backoff_base
        self.transport = transport

        if not self.api_key:
            logger.warning("[FASHN] FASHN_API_KEY is not set. API calls will fail.")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=settings.RENDER_HTTP_TIMEOUT,
            transport=self.transport,
        )

    def _retrying(self, func, attempts: int):
        """Wrap ``func`` so it is tried at most ``attempts`` times in total."""
        return with_retry(max_retries=max(attempts - 1, 0), retry_delay=self.backoff_base)(func)

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        accept_not_found: bool = False,
        retry_client_errors: bool = False,
        **kwargs,
    ) -> httpx.Response:
        """
        One HTTP attempt, classified for with_retry.

        Raises:
            RetryableError: transport error, 429 or 5xx
            NonRetryableError: any other 4xx, unless retry_client_errors
        """
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise RetryableError(f"{method} {url} failed: {e}")

        if response.status_code == 404 and accept_not_found:
            return response
        if response.status_code == 429 or response.status_code >= 500:
            raise RetryableError(f"{method} {url} returned {response.status_code}: {response.text[:200]}")
        if response.status_code >= 400:
            if retry_client_errors:
                raise RetryableError(f"{method} {url} returned {response.status_code}: {response.text[:200]}")
            raise NonRetryableError(f"{method} {url} returned {response.status_code}: {response.text[:200]}")
        return response

    @staticmethod
    def _error_message(payload: Dict[str, Any]) -> Optional[str]:
        error = payload.get("error")
        if not error:
            return None
        if isinstance(error, dict):
            return error.get("message") or error.get("name") or str(error)
        return str(error)

    async def submit(self, garment_image_url: str, model_image_url: str, client: Optional[httpx.AsyncClient] = None) -> str:
        """
        POST /v1/run for a try-on.

        Returns:
            The FASHN prediction id
        """
        payload = {
            "model_name": settings.FASHN_MODEL_NAME,
            "inputs": {
                "garment_image": resolve_image_url(garment_image_url),
                "model_image": resolve_image_url(model_image_url),
                "mode": settings.FASHN_MODE,
            },
        }

        async def _post(c: httpx.AsyncClient) -> httpx.Response:
            return await self._send(c, "POST", "/v1/run", retry_client_errors=True, json=payload)

        try:
            if client is not None:
                response = await self._retrying(_post, self.submit_retries)(client)
            else:
                async with self._client() as own_client:
                    response = await self._retrying(_post, self.submit_retries)(own_client)
        except (RetryableError, NonRetryableError) as e:
            raise ExternalServiceError(f"Render submission failed: {e}", code="RENDER_SUBMIT_FAILED")

        data = response.json()
        message = self._error_message(data)
        if message:
            raise ExternalServiceError(f"Render submission rejected: {message}", code="RENDER_SUBMIT_FAILED")
        if not data.get("id"):
            raise ExternalServiceError("Render submission returned no id", code="RENDER_SUBMIT_FAILED")

        logger.info(f"[FASHN] Submitted run {data['id']}")
        return data["id"]

    async def poll(self, external_id: str, client: Optional[httpx.AsyncClient] = None) -> str:
        """
        Poll GET /v1/status/{id} until a terminal status or the wait budget runs out.

        Returns:
            The output image URL
        """
        if client is None:
            async with self._client() as own_client:
                return await self.poll(external_id, own_client)

        async def _status(c: httpx.AsyncClient) -> httpx.Response:
            return await self._send(c, "GET", f"/v1/status/{external_id}", accept_not_found=True)

        get_status = self._retrying(_status, 2)
        deadline = time.monotonic() + self.max_wait

        while time.monotonic() < deadline:
            try:
                response = await get_status(client)
            except (RetryableError, NonRetryableError) as e:
                raise ExternalServiceError(f"Render status check failed: {e}", code="RENDER_POLL_FAILED")

            if response.status_code == 404:
                # Prediction not visible yet
                logger.debug(f"[FASHN] Status 404 for {external_id}, waiting...")
                await asyncio.sleep(self.poll_interval)
                continue

            data = response.json()
            status = data.get("status")

            if status in SUCCESS_STATUSES:
                output = data.get("output") or []
                if not output:
                    raise ExternalServiceError(
                        f"Render {external_id} {status} without output", code="RENDER_NO_OUTPUT"
                    )
                return output[0]

            if status in FAILURE_STATUSES:
                message = self._error_message(data) or f"Render {status}"
                raise ExternalServiceError(message, code="RENDER_FAILED", details={"external_id": external_id})

            if status not in ("starting", "in_queue", "processing"):
                logger.warning(f"[FASHN] Unexpected status '{status}' for {external_id}")

            await asyncio.sleep(self.poll_interval)

        raise ExternalServiceError(
            f"Render {external_id} timed out after {self.max_wait:.0f}s",
            code="RENDER_TIMEOUT",
            details={"external_id": external_id},
        )

    async def render(self, garment_image_url: str, model_image_url: str) -> RenderResult:
        """Submit a try-on and wait for its output."""
        async with self._client() as client:
            external_id = await self.submit(garment_image_url, model_image_url, client)
            output_url = await self.poll(external_id, client)

        logger.info(f"[FASHN] Run {external_id} succeeded")
        return RenderResult(external_id=external_id, output_url=output_url)

    async def download_output(self, url: str) -> bytes:
        """Fetch the rendered image bytes from the service's CDN."""

        async def _get(c: httpx.AsyncClient) -> httpx.Response:
            return await self._send(c, "GET", url)

        try:
            async with httpx.AsyncClient(timeout=settings.RENDER_HTTP_TIMEOUT, transport=self.transport) as client:
                response = await self._retrying(_get, self.submit_retries)(client)
        except (RetryableError, NonRetryableError) as e:
            raise ExternalServiceError(f"Output download failed: {e}", code="RENDER_DOWNLOAD_FAILED")
        return response.content


def get_render_service() -> FashnRenderService:
    return FashnRenderService()
