"""Shared pytest fixtures for PixelPrompt tests."""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.pool import NullPool

from pixelprompt.api.gallery_store import ImageStore
from pixelprompt.api.main import create_app
from pixelprompt.core.config import PixelpromptConfig
from pixelprompt.core.providers import HostedImage, ImageGenerator, MediaHost

# ---------------------------------------------------------------------------
# Fake providers.
# ---------------------------------------------------------------------------


class FakeImageGenerator(ImageGenerator):
    """Stand-in for the OpenAI adapter.

    Attributes:
        calls: ``(prompt, size)`` for every call, including failed ones.
        failures: Exceptions raised by the next calls, in order.
        empty: When ``True``, answer without an image URL.
        closed: Set once the app shuts down.
    """

    name = "OpenAI"

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.failures: list[BaseException] = []
        self.empty = False
        self.closed = False

    async def generate(self, prompt: str, size: str) -> str | None:
        self.calls.append((prompt, size))
        if self.failures:
            raise self.failures.pop(0)
        if self.empty:
            return None
        return f"https://oaidalle.example.com/generated/{len(self.calls)}.png"

    async def aclose(self) -> None:
        self.closed = True


class FakeMediaHost(MediaHost):
    """Stand-in for the Cloudinary adapter.

    Returns plain ``http`` URLs so callers must normalise them.  Setting
    ``fixed_url`` makes every upload return the same URL.
    """

    name = "Cloudinary"

    def __init__(self) -> None:
        self.uploads: list[tuple[str, str]] = []
        self.failures: list[BaseException] = []
        self.fixed_url: str | None = None

    async def upload(self, source_url: str, *, folder: str) -> HostedImage:
        self.uploads.append((source_url, folder))
        if self.failures:
            raise self.failures.pop(0)
        n = len(self.uploads)
        url = self.fixed_url or f"http://res.cloudinary.com/demo/image/upload/{folder}/img{n}.png"
        return HostedImage(url=url, public_id=f"{folder}/img{n}")


# ---------------------------------------------------------------------------
# Helpers.
# ---------------------------------------------------------------------------


def make_clock(start: datetime | None = None) -> Callable[[], datetime]:
    """Return a clock that advances one second per call."""
    current = [start or datetime(2024, 1, 1, tzinfo=timezone.utc)]

    def clock() -> datetime:
        value = current[0]
        current[0] = value + timedelta(seconds=1)
        return value

    return clock


def make_store(database_url: str) -> ImageStore:
    """Build a store with a fresh connection per session and a fake clock."""
    return ImageStore.from_url(database_url, clock=make_clock(), poolclass=NullPool)


# ---------------------------------------------------------------------------
# Fixtures.
# ---------------------------------------------------------------------------


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def database_url(temp_dir: Path) -> str:
    return f"sqlite+aiosqlite:///{temp_dir / 'pixelprompt-test.db'}"


@pytest.fixture
def test_config(database_url: str) -> PixelpromptConfig:
    """Create a test configuration with dummy credentials.

    Rate limits are raised far above anything a single test sends so that
    only the dedicated rate limit tests ever hit them.

    Returns:
        PixelpromptConfig instance for testing
    """
    return PixelpromptConfig(
        _env_file=None,
        environment="test",
        database_url=database_url,
        openai_api_key="sk-test",
        cloudinary_cloud_name="demo",
        cloudinary_api_key="cloudinary-key",
        cloudinary_api_secret="cloudinary-secret",
        rate_limit_max_requests=10_000,
        image_generation_rate_limit_max_requests=10_000,
    )


@pytest.fixture
def store(database_url: str) -> Generator[ImageStore, None, None]:
    """Image store over a temporary SQLite file with the schema created."""
    image_store = make_store(database_url)
    asyncio.run(image_store.create_schema())
    try:
        yield image_store
    finally:
        asyncio.run(image_store.dispose())


@pytest.fixture
def fake_generator() -> FakeImageGenerator:
    return FakeImageGenerator()


@pytest.fixture
def fake_media_host() -> FakeMediaHost:
    return FakeMediaHost()


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff delays requested through :func:`no_sleep`."""
    return []


@pytest.fixture
def no_sleep(sleeps: list[float]):
    """Async sleep replacement that records the delay and returns at once."""

    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def build_app(store, fake_generator, fake_media_host, no_sleep) -> Callable[..., FastAPI]:
    """Factory building the app for a given config around the fake providers."""

    def _build(config: PixelpromptConfig) -> FastAPI:
        return create_app(
            config,
            store=store,
            generator=fake_generator,
            media_host=fake_media_host,
            sleep=no_sleep,
        )

    return _build


@pytest.fixture
def test_app(build_app, test_config: PixelpromptConfig) -> FastAPI:
    return build_app(test_config)


@pytest.fixture
def test_client(test_app: FastAPI) -> Generator[TestClient, None, None]:
    """FastAPI TestClient with the lifespan running."""
    with TestClient(test_app) as client:
        yield client


@pytest.fixture
def seed_images(store: ImageStore):
    """Insert ``count`` records, oldest first, and return them."""

    def _seed(count: int, prefix: str = "seed"):
        async def _create_all():
            return [
                await store.create(
                    prompt=f"{prefix} prompt {i}",
                    image_url=f"https://cdn.example.com/{prefix}/{i}.png",
                    external_media_id=f"{prefix}-{i}",
                )
                for i in range(1, count + 1)
            ]

        return asyncio.run(_create_all())

    return _seed
