"""Asynchronous HTTP client for the PixelPrompt API.

:class:`ImageServiceClient` validates input before any network call, wraps
each request in :func:`~pixelprompt.core.retry.with_retry`, and converts
every failure into an :class:`~pixelprompt.core.errors.AppError`:

- a request that exceeds its timeout becomes ``TIMEOUT``,
- a request that never reached the server becomes ``NETWORK``,
- an error envelope from the server keeps its message and status code.

Example::

    async with ImageServiceClient("http://localhost:8080") as client:
        generated = await client.generate_image("A castle at sunset", "Medium")
        page = await client.fetch_images(page=1, limit=8)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from pixelprompt.api.models import GalleryPage, GeneratedImage, ImageRecord, Pagination
from pixelprompt.core.errors import error_for_status, network_error, timeout_error
from pixelprompt.core.retry import (
    GALLERY_RETRY,
    GENERATION_RETRY,
    HEALTH_RETRY,
    RetryPolicy,
    SleepFunc,
    with_retry,
)
from pixelprompt.core.validation import (
    DEFAULT_LIMIT,
    DEFAULT_PAGE,
    sanitize_prompt,
    validate_image_size,
    validate_pagination,
    validate_prompt,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8080"


class ImageServiceClient:
    """Client for the image generation and gallery endpoints.

    Args:
        base_url: Root URL of the API server.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport.  Tests pass an
            ``httpx.ASGITransport`` or ``httpx.MockTransport``.
        sleep: Backoff sleep function used between retries.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.base_url = base_url
        self._sleep = sleep
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> ImageServiceClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -----------------------------------------------------------------------
    # Operations.
    # -----------------------------------------------------------------------

    async def generate_image(self, prompt: object, size: object = "Small") -> GeneratedImage:
        """Ask the server to generate one image.

        The prompt and size are validated locally first; a validation failure
        is raised without any request being sent.

        Args:
            prompt: User prompt (3 to 1000 characters, no markup).
            size: ``Small``, ``Medium`` or ``Large``.

        Returns:
            The hosted image URL and media identifier.

        Raises:
            AppError: ``VALIDATION`` for bad input, otherwise the classified
                failure from the last attempt.
        """
        prompt = validate_prompt(prompt)
        size = validate_image_size(size)
        body = {"prompt": sanitize_prompt(prompt), "size": size}

        logger.info(f"Requesting {size} image for prompt: {body['prompt'][:50]}...")
        payload = await self._call("POST", "/api/image/generate", GENERATION_RETRY, json=body)
        return GeneratedImage.model_validate(payload["data"])

    async def fetch_images(self, page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT) -> GalleryPage:
        """Fetch one gallery page, newest first.

        Raises:
            AppError: ``VALIDATION`` for out-of-range arguments, otherwise the
                classified failure from the last attempt.
        """
        page, limit = validate_pagination(page, limit)
        payload = await self._call(
            "GET",
            "/api/image/all",
            GALLERY_RETRY,
            params={"page": page, "limit": limit},
        )
        return GalleryPage(
            images=[ImageRecord.model_validate(item) for item in payload.get("data") or []],
            pagination=Pagination.model_validate(payload["pagination"]),
        )

    async def check_health(self) -> dict[str, Any]:
        """Probe ``GET /health`` once."""
        return await self._call("GET", "/health", HEALTH_RETRY)

    # -----------------------------------------------------------------------
    # Transport.
    # -----------------------------------------------------------------------

    async def _call(self, method: str, path: str, policy: RetryPolicy, **kwargs: Any) -> dict[str, Any]:
        return await with_retry(
            lambda: self._request(method, path, **kwargs),
            policy,
            sleep=self._sleep,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Send one request and unwrap the JSON envelope.

        Raises:
            AppError: ``TIMEOUT``, ``NETWORK``, or the kind matching the error
                status returned by the server.
        """
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise timeout_error() from exc
        except httpx.TransportError as exc:
            raise network_error() from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if response.is_error or payload.get("success") is False:
            message = payload.get("message") or f"Request failed with status {response.status_code}"
            status = response.status_code if response.is_error else 500
            raise error_for_status(status, message)

        return payload
