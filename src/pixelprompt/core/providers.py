"""External provider adapters.

PixelPrompt talks to two third-party services, both treated as opaque
request/response boundaries:

- an **image generator** that turns a prompt into a temporary image URL
  (:class:`OpenAIImageGenerator`), and
- a **media host** that copies that image into durable storage and returns
  its public URL (:class:`CloudinaryMediaHost`).

Each adapter translates its SDK's failures into the
:mod:`pixelprompt.core.errors` taxonomy: timeouts become ``TIMEOUT`` and
connection failures become ``NETWORK`` (both retryable), anything else the
provider reports becomes an ``EXTERNAL_SERVICE`` error naming the provider.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import cloudinary.exceptions
import cloudinary.uploader
import openai
from openai import AsyncOpenAI

from pixelprompt.core.errors import (
    external_service_error,
    network_error,
    timeout_error,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HostedImage:
    """Result of copying an image into the media host."""

    url: str
    public_id: str


class ImageGenerator(ABC):
    """Turns a text prompt into the URL of one generated image."""

    name: str = "Image Generator"

    @abstractmethod
    async def generate(self, prompt: str, size: str) -> str | None:
        """Generate exactly one image.

        Args:
            prompt: Validated, trimmed prompt.
            size: Pixel dimensions such as ``"512x512"``.

        Returns:
            URL of the generated image, or ``None`` if the provider answered
            without a usable image reference.
        """

    async def aclose(self) -> None:
        """Release network resources held by the generator."""


class MediaHost(ABC):
    """Copies a remote image into durable hosting."""

    name: str = "Media Host"

    @abstractmethod
    async def upload(self, source_url: str, *, folder: str) -> HostedImage:
        """Fetch ``source_url`` into ``folder`` and return the hosted copy."""


class OpenAIImageGenerator(ImageGenerator):
    """OpenAI Images API adapter.

    The SDK's own retries are disabled (``max_retries=0``) because retries
    are applied by :func:`pixelprompt.core.retry.with_retry`.
    """

    name = "OpenAI"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "dall-e-2",
        timeout: float = 30.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    async def generate(self, prompt: str, size: str) -> str | None:
        logger.info(f"Calling OpenAI image generation (model={self.model}, size={size})")
        try:
            response = await self._client.images.generate(
                model=self.model,
                prompt=prompt,
                n=1,
                size=size,
            )
        except openai.APITimeoutError as exc:
            raise timeout_error("OpenAI image generation request timed out") from exc
        except openai.APIConnectionError as exc:
            raise network_error("Network error occurred while contacting OpenAI") from exc
        except openai.OpenAIError as exc:
            raise external_service_error(self.name, str(exc)) from exc

        if not response.data:
            return None
        return response.data[0].url

    async def aclose(self) -> None:
        await self._client.close()


class CloudinaryMediaHost(MediaHost):
    """Cloudinary upload adapter.

    Credentials are passed with every upload call instead of through
    ``cloudinary.config()`` so that no process-wide SDK state is mutated.
    The SDK is blocking, so uploads run in a worker thread.
    """

    name = "Cloudinary"

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        *,
        timeout: float = 30.0,
    ) -> None:
        self._credentials = {
            "cloud_name": cloud_name,
            "api_key": api_key,
            "api_secret": api_secret,
        }
        self.timeout = timeout

    def _upload_options(self, folder: str) -> dict[str, Any]:
        return {
            **self._credentials,
            "folder": folder,
            "resource_type": "image",
            "quality": "auto",
            "fetch_format": "auto",
            "timeout": self.timeout,
        }

    async def upload(self, source_url: str, *, folder: str) -> HostedImage:
        logger.info(f"Uploading generated image to Cloudinary folder '{folder}'")
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(cloudinary.uploader.upload, source_url, **self._upload_options(folder)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise timeout_error("Cloudinary upload timed out") from exc
        except cloudinary.exceptions.Error as exc:
            raise external_service_error(self.name, str(exc)) from exc

        url = result.get("secure_url") or result.get("url")
        public_id = result.get("public_id")
        if not url or not public_id:
            raise external_service_error(self.name, "Upload response did not include a URL")

        return HostedImage(url=url, public_id=public_id)
