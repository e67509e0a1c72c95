"""Infinite-scroll gallery state.

:class:`GalleryFeed` accumulates gallery pages fetched through an
:class:`~pixelprompt.client.service.ImageServiceClient`.  Pages are appended
in the order they arrive and de-duplicated by image ``id`` (a record created
between two page loads shifts every later page by one, so the same image can
appear at the end of one page and the start of the next).  The aggregated
list is never re-sorted.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from pixelprompt.api.models import ImageRecord
from pixelprompt.client.service import ImageServiceClient
from pixelprompt.core.validation import DEFAULT_LIMIT, DEFAULT_PAGE

logger = logging.getLogger(__name__)


def merge_unique(existing: Sequence[ImageRecord], incoming: Iterable[ImageRecord]) -> list[ImageRecord]:
    """Append ``incoming`` to ``existing``, skipping ids already present.

    The first occurrence of an id wins and relative order is preserved.
    """
    seen = {image.id for image in existing}
    merged = list(existing)
    for image in incoming:
        if image.id in seen:
            continue
        seen.add(image.id)
        merged.append(image)
    return merged


class GalleryFeed:
    """Aggregated gallery state driven by repeated page loads.

    Only one page load runs at a time; calls made while a load is in flight,
    after the last page, or after :meth:`close` return immediately.  Results
    that arrive after :meth:`close` or :meth:`reset` are dropped.

    Args:
        client: API client used to fetch pages.
        limit: Page size.
    """

    def __init__(self, client: ImageServiceClient, *, limit: int = DEFAULT_LIMIT) -> None:
        self.client = client
        self.limit = limit
        self._images: list[ImageRecord] = []
        self._page = DEFAULT_PAGE
        self._has_more = True
        self._loading = False
        self._closed = False
        self._generation = 0

    @property
    def images(self) -> list[ImageRecord]:
        return list(self._images)

    @property
    def page(self) -> int:
        """Next page number to request."""
        return self._page

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def is_loading(self) -> bool:
        return self._loading

    async def load_more(self) -> list[ImageRecord]:
        """Fetch the next page and merge it into the aggregated state.

        Returns:
            The images newly added by this call (empty when nothing was
            loaded).

        Raises:
            AppError: The failure reported by the client.  The feed keeps its
                current state so the same page can be retried.
        """
        if self._loading or not self._has_more or self._closed:
            return []

        generation = self._generation
        page = self._page
        self._loading = True
        try:
            result = await self.client.fetch_images(page=page, limit=self.limit)
        finally:
            if generation == self._generation:
                self._loading = False

        if self._closed:
            logger.debug(f"Dropping page {page} fetched after the feed was closed")
            return []
        if generation != self._generation:
            logger.debug(f"Dropping page {page} fetched before the feed was reset")
            return []

        before = len(self._images)
        self._images = merge_unique(self._images, result.images)
        self._has_more = result.pagination.has_more
        self._page += 1
        return self._images[before:]

    async def refresh(self) -> list[ImageRecord]:
        """Start over from the first page."""
        self.reset()
        return await self.load_more()

    def reset(self) -> None:
        """Forget all loaded pages.

        A load still in flight is abandoned: its page is dropped when it
        arrives and a new load may start immediately.
        """
        self._generation += 1
        self._loading = False
        self._images = []
        self._page = DEFAULT_PAGE
        self._has_more = True

    def close(self) -> None:
        """Stop accepting results, including those of an in-flight load."""
        self._closed = True
