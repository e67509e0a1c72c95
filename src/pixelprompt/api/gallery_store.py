"""Image storage for the PixelPrompt gallery.

This module isolates persistence from ``pixelprompt.api.main`` so route
handlers can focus on HTTP concerns while the store remains testable as a
small unit against a temporary SQLite file.

The gallery is intentionally simple:

- one ``images`` table, one row per generated image
- ``image_url`` is unique and always stored with an ``https`` scheme
- list order is reverse-chronological (newest first)

Every storage failure is translated into the
:mod:`pixelprompt.core.errors` taxonomy: a duplicate URL becomes a
``CONFLICT`` error, a missing row a ``NOT_FOUND`` error, anything else the
database reports a ``DATABASE`` error.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, String, Text, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from pixelprompt.api.models import GalleryPage, ImageRecord, Pagination
from pixelprompt.core.errors import (
    conflict_error,
    database_error,
    not_found_error,
)
from pixelprompt.core.validation import (
    normalize_https,
    validate_image_url,
    validate_pagination,
    validate_server_prompt,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    pass


class ImageRow(Base):
    """ORM mapping for one gallery image."""

    __tablename__ = "images"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    prompt: Mapped[str] = mapped_column(String(1000), nullable=False)
    image_url: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    external_media_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<ImageRow(id={self.id}, image_url={self.image_url})>"


class ImageStore:
    """Async CRUD operations over the ``images`` table.

    Args:
        engine: SQLAlchemy async engine the store owns.
        clock: Returns the creation timestamp for new rows.  Tests pass a
            monotonically increasing fake so ordering is deterministic.
    """

    def __init__(self, engine: AsyncEngine, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self.engine = engine
        self._clock = clock
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(
        cls,
        database_url: str,
        *,
        clock: Callable[[], datetime] = _utcnow,
        **engine_kwargs: Any,
    ) -> ImageStore:
        """Build a store from a SQLAlchemy async connection URI."""
        engine = create_async_engine(database_url, **engine_kwargs)
        return cls(engine, clock=clock)

    async def create_schema(self) -> None:
        """Create the ``images`` table if it does not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Image table ready")

    async def dispose(self) -> None:
        await self.engine.dispose()

    # -----------------------------------------------------------------------
    # Operations.
    # -----------------------------------------------------------------------

    async def create(
        self,
        *,
        prompt: str,
        image_url: str,
        external_media_id: str | None = None,
    ) -> ImageRecord:
        """Insert a new image record.

        The URL is forced to ``https`` before it is validated and written.

        Args:
            prompt: Prompt the image was generated from.
            image_url: Hosted image URL.
            external_media_id: Media host reference, if any.

        Returns:
            The stored record.

        Raises:
            AppError: ``VALIDATION`` for an invalid prompt or URL,
                ``CONFLICT`` if the URL is already stored, ``DATABASE`` for
                any other storage failure.
        """
        prompt = validate_server_prompt(prompt)
        image_url = validate_image_url(normalize_https(image_url))

        now = self._clock()
        row = ImageRow(
            id=_new_id(),
            prompt=prompt,
            image_url=image_url,
            external_media_id=external_media_id,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        except IntegrityError as exc:
            logger.warning(f"Duplicate image URL rejected: {image_url}")
            raise conflict_error("Image with this URL already exists", image_url=image_url) from exc
        except SQLAlchemyError as exc:
            logger.error(f"Failed to create image: {exc}")
            raise database_error("Failed to create image") from exc

        logger.info(f"Stored image {row.id}")
        return ImageRecord.model_validate(row)

    async def list_page(self, limit: int, skip: int) -> list[ImageRecord]:
        """Return up to ``limit`` records after skipping ``skip``, newest first."""
        stmt = select(ImageRow).order_by(ImageRow.created_at.desc()).offset(skip).limit(limit)
        try:
            async with self._session_factory() as session:
                rows = (await session.scalars(stmt)).all()
        except SQLAlchemyError as exc:
            logger.error(f"Failed to retrieve images: {exc}")
            raise database_error("Failed to retrieve images") from exc

        return [ImageRecord.model_validate(row) for row in rows]

    async def find_by_id(self, image_id: str) -> ImageRecord:
        """Look up one record.

        Raises:
            AppError: ``NOT_FOUND`` when no record matches, ``DATABASE`` on
                storage failure.
        """
        try:
            async with self._session_factory() as session:
                row = await session.get(ImageRow, image_id)
        except SQLAlchemyError as exc:
            logger.error(f"Failed to retrieve image {image_id}: {exc}")
            raise database_error("Failed to retrieve image") from exc

        if row is None:
            raise not_found_error("Image not found", id=image_id)
        return ImageRecord.model_validate(row)

    async def delete_by_id(self, image_id: str) -> ImageRecord:
        """Delete one record and return what was removed.

        Raises:
            AppError: ``NOT_FOUND`` when no record matches, ``DATABASE`` on
                storage failure.
        """
        try:
            async with self._session_factory() as session:
                row = await session.get(ImageRow, image_id)
                if row is None:
                    raise not_found_error("Image not found", id=image_id)
                await session.delete(row)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error(f"Failed to delete image {image_id}: {exc}")
            raise database_error("Failed to delete image") from exc

        logger.info(f"Deleted image {image_id}")
        return ImageRecord.model_validate(row)


# ---------------------------------------------------------------------------
# Pagination.
# ---------------------------------------------------------------------------


async def fetch_gallery_page(store: ImageStore, page: object, limit: object) -> GalleryPage:
    """Fetch one gallery page, newest first.

    ``has_more`` is ``True`` whenever the page came back full.  No separate
    count query is issued, so ``total`` is the number of records in the page.

    Args:
        store: Image store to read from.
        page: One-based page number.
        limit: Page size (1 to 100).

    Returns:
        The page's records plus pagination metadata.

    Raises:
        AppError: ``VALIDATION`` for out-of-range pagination parameters,
            ``DATABASE`` on storage failure.
    """
    page, limit = validate_pagination(page, limit)
    skip = limit * (page - 1)

    images = await store.list_page(limit, skip)

    return GalleryPage(
        images=images,
        pagination=Pagination(
            page=page,
            limit=limit,
            total=len(images),
            has_more=len(images) == limit,
        ),
    )
