"""Tests for pixelprompt.client.gallery - aggregated gallery state.

``GalleryFeed`` is driven by a scripted stand-in for ImageServiceClient so
page contents, overlaps, and failures are fully controlled.
"""

from __future__ import annotations

import asyncio

import pytest

from pixelprompt.api.models import GalleryPage, ImageRecord, Pagination
from pixelprompt.client.gallery import GalleryFeed, merge_unique
from pixelprompt.core.errors import AppError, network_error


def _image(image_id: str) -> ImageRecord:
    return ImageRecord(id=image_id, prompt=f"prompt {image_id}", image_url=f"https://cdn.example.com/{image_id}.png")


def _page(ids: list[str], page: int, limit: int = 3, has_more: bool | None = None) -> GalleryPage:
    return GalleryPage(
        images=[_image(i) for i in ids],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=len(ids),
            has_more=len(ids) == limit if has_more is None else has_more,
        ),
    )


class ScriptedClient:
    """Returns queued pages (or raises queued errors) in order."""

    def __init__(self, *results) -> None:
        self.results = list(results)
        self.requests: list[tuple[int, int]] = []
        self.gate: asyncio.Event | None = None

    async def fetch_images(self, page: int = 1, limit: int = 8) -> GalleryPage:
        self.requests.append((page, limit))
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


# ---------------------------------------------------------------------------
# merge_unique.
# ---------------------------------------------------------------------------


class TestMergeUnique:
    """Identity de-duplication."""

    def test_appends_new_images(self):
        merged = merge_unique([_image("a")], [_image("b"), _image("c")])
        assert [i.id for i in merged] == ["a", "b", "c"]

    def test_skips_existing_ids(self):
        merged = merge_unique([_image("a"), _image("b")], [_image("b"), _image("c")])
        assert [i.id for i in merged] == ["a", "b", "c"]

    def test_duplicates_within_incoming(self):
        merged = merge_unique([], [_image("a"), _image("a")])
        assert [i.id for i in merged] == ["a"]

    def test_existing_not_mutated(self):
        existing = [_image("a")]
        merge_unique(existing, [_image("b")])
        assert [i.id for i in existing] == ["a"]


# ---------------------------------------------------------------------------
# GalleryFeed.
# ---------------------------------------------------------------------------


class TestGalleryFeed:
    """Page accumulation and guards."""

    def test_overlapping_pages_deduplicated(self):
        """An image shifted onto the next page appears only once."""
        client = ScriptedClient(
            _page(["e", "d", "c"], 1),
            _page(["c", "b", "a"], 2),
            _page([], 3),
        )
        feed = GalleryFeed(client, limit=3)

        async def scenario():
            await feed.load_more()
            added = await feed.load_more()
            return added

        added = asyncio.run(scenario())

        assert [i.id for i in feed.images] == ["e", "d", "c", "b", "a"]
        assert [i.id for i in added] == ["b", "a"]
        assert client.requests == [(1, 3), (2, 3)]
        assert feed.page == 3

    def test_stops_when_exhausted(self):
        client = ScriptedClient(_page(["b", "a"], 1))
        feed = GalleryFeed(client, limit=3)

        async def scenario():
            await feed.load_more()
            return await feed.load_more()

        assert asyncio.run(scenario()) == []
        assert feed.has_more is False
        assert len(client.requests) == 1

    def test_single_request_in_flight(self):
        """A second call while a load is running returns immediately."""
        client = ScriptedClient(_page(["c", "b", "a"], 1))
        feed = GalleryFeed(client, limit=3)

        async def scenario():
            client.gate = asyncio.Event()
            first = asyncio.create_task(feed.load_more())
            await asyncio.sleep(0)
            assert feed.is_loading is True
            second = await feed.load_more()
            client.gate.set()
            return await first, second

        first, second = asyncio.run(scenario())

        assert second == []
        assert [i.id for i in first] == ["c", "b", "a"]
        assert len(client.requests) == 1
        assert feed.is_loading is False

    def test_results_after_close_are_dropped(self):
        client = ScriptedClient(_page(["c", "b", "a"], 1))
        feed = GalleryFeed(client, limit=3)

        async def scenario():
            client.gate = asyncio.Event()
            task = asyncio.create_task(feed.load_more())
            await asyncio.sleep(0)
            feed.close()
            client.gate.set()
            return await task

        assert asyncio.run(scenario()) == []
        assert feed.images == []

    def test_closed_feed_does_not_fetch(self):
        client = ScriptedClient()
        feed = GalleryFeed(client)
        feed.close()
        assert asyncio.run(feed.load_more()) == []
        assert client.requests == []

    def test_failure_keeps_state(self):
        """A failed load can be retried for the same page."""
        client = ScriptedClient(network_error(), _page(["c", "b", "a"], 1))
        feed = GalleryFeed(client, limit=3)

        with pytest.raises(AppError):
            asyncio.run(feed.load_more())

        assert feed.page == 1
        assert feed.is_loading is False

        asyncio.run(feed.load_more())
        assert [i.id for i in feed.images] == ["c", "b", "a"]
        assert client.requests == [(1, 3), (1, 3)]

    def test_refresh_starts_over(self):
        client = ScriptedClient(
            _page(["c", "b", "a"], 1),
            _page(["d", "c", "b"], 1),
        )
        feed = GalleryFeed(client, limit=3)

        asyncio.run(feed.load_more())
        asyncio.run(feed.refresh())

        assert [i.id for i in feed.images] == ["d", "c", "b"]
        assert client.requests == [(1, 3), (1, 3)]
        assert feed.page == 2

    def test_reset(self):
        client = ScriptedClient(_page(["b", "a"], 1))
        feed = GalleryFeed(client, limit=3)
        asyncio.run(feed.load_more())

        feed.reset()

        assert feed.images == []
        assert feed.page == 1
        assert feed.has_more is True

    def test_reset_drops_in_flight_page(self):
        """A page requested before a reset never reaches the fresh state."""
        client = ScriptedClient(_page(["z", "y", "x"], 4), _page(["c", "b", "a"], 1))
        feed = GalleryFeed(client, limit=3)

        async def scenario():
            client.gate = asyncio.Event()
            stale = asyncio.create_task(feed.load_more())
            await asyncio.sleep(0)
            feed.reset()
            fresh = asyncio.create_task(feed.load_more())
            await asyncio.sleep(0)
            client.gate.set()
            return await stale, await fresh

        stale, fresh = asyncio.run(scenario())

        assert stale == []
        assert [i.id for i in fresh] == ["c", "b", "a"]
        assert [i.id for i in feed.images] == ["c", "b", "a"]
        assert feed.page == 2
        assert feed.is_loading is False
        assert client.requests == [(1, 3), (1, 3)]
