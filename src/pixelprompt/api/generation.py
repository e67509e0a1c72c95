"""Image generation orchestration.

:class:`ImageGenerationService` runs one generation request end to end:

1. validate the prompt and resolve the size label to pixel dimensions,
2. ask the image generator for one image (retried),
3. copy the result into the media host (retried),
4. persist the hosted ``https`` URL with its prompt,
5. return the hosted URL and media identifier.

Provider network and timeout failures are retried by
:func:`~pixelprompt.core.retry.with_retry`.  An empty provider answer and
storage failures are terminal.  Anything outside the error taxonomy is
reported as a generic ``EXTERNAL_SERVICE`` error so internals never reach the
API response.
"""

from __future__ import annotations

import asyncio
import logging

from pixelprompt.api.gallery_store import ImageStore
from pixelprompt.api.models import GeneratedImage
from pixelprompt.core.errors import AppError, ErrorKind, database_error, external_service_error
from pixelprompt.core.providers import ImageGenerator, MediaHost
from pixelprompt.core.retry import GENERATION_RETRY, RetryPolicy, SleepFunc, is_transient, with_retry
from pixelprompt.core.validation import (
    normalize_https,
    resolve_image_size,
    validate_server_prompt,
)

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_FOLDER = "ai-generated-images"


class ImageGenerationService:
    """Generate, host, and store images.

    Args:
        generator: Image generation provider.
        media_host: Durable hosting provider.
        store: Image store receiving the new record.
        policy: Retry policy applied to each provider call.
        folder: Media host folder for uploads.
        sleep: Backoff sleep function, replaced by a no-op in tests.
    """

    def __init__(
        self,
        generator: ImageGenerator,
        media_host: MediaHost,
        store: ImageStore,
        *,
        policy: RetryPolicy = GENERATION_RETRY,
        folder: str = DEFAULT_MEDIA_FOLDER,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.generator = generator
        self.media_host = media_host
        self.store = store
        self.policy = policy
        self.folder = folder
        self._sleep = sleep

    async def generate(self, prompt: object, size: object = "Small") -> GeneratedImage:
        """Run the full generation flow for one prompt.

        Args:
            prompt: Raw prompt from the request body.
            size: Size label; unknown labels fall back to ``Small``.

        Returns:
            The hosted image URL (always ``https``) and its media identifier.

        Raises:
            AppError: ``VALIDATION`` before any provider call for a bad
                prompt, ``EXTERNAL_SERVICE``/``NETWORK``/``TIMEOUT`` for
                provider failures, ``CONFLICT``/``DATABASE`` for storage
                failures.
        """
        prompt = validate_server_prompt(prompt)
        dimensions = resolve_image_size(size)

        logger.info(f"Generating image ({dimensions}) for prompt: {prompt[:50]}...")

        try:
            source_url = await with_retry(
                lambda: self.generator.generate(prompt, dimensions),
                self.policy,
                retry_on=is_transient,
                sleep=self._sleep,
            )
            if not source_url:
                raise external_service_error(
                    self.generator.name, f"No image URL returned from {self.generator.name} API"
                )

            hosted = await with_retry(
                lambda: self.media_host.upload(source_url, folder=self.folder),
                self.policy,
                retry_on=is_transient,
                sleep=self._sleep,
            )
            image_url = normalize_https(hosted.url)

            await self._persist(prompt, image_url, hosted.public_id)
        except AppError:
            raise
        except Exception as exc:
            logger.exception(f"Unexpected error during image generation: {exc}")
            raise external_service_error(
                "Image Generation", "An unexpected error occurred during image generation"
            ) from exc

        logger.info(f"Image generated and stored: {image_url}")
        return GeneratedImage(image_url=image_url, external_media_id=hosted.public_id)

    async def _persist(self, prompt: str, image_url: str, external_media_id: str | None) -> None:
        # The prompt is already validated; a rejected record means the hosted URL is unusable.
        try:
            await self.store.create(
                prompt=prompt,
                image_url=image_url,
                external_media_id=external_media_id,
            )
        except AppError as exc:
            if exc.kind is not ErrorKind.VALIDATION:
                raise
            logger.error(f"Generated image failed record validation: {exc.message}")
            raise database_error(f"Validation failed: {exc.message}") from exc
