"""Pydantic request and response models for the PixelPrompt API.

These models define the JSON schema for every API endpoint.  Python-side
attribute names are snake_case; the wire format uses the camelCase names the
browser client expects (``imageUrl``, ``cloudinaryId``, ``hasMore``, ...),
declared as aliases.  Models accept either spelling on input and always
serialise with the aliases (``model_dump(by_alias=True)``).

Models
------
GenerateRequest
    Payload for ``POST /api/image/generate``.
ImageRecord
    One persisted gallery image.
GeneratedImage
    Result of a successful generation.
Pagination
    Page metadata attached to gallery listings.
GalleryPage
    One page of gallery images plus its pagination metadata.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    """Base model accepting both field names and camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)


class GenerateRequest(BaseModel):
    """Request body for the ``POST /api/image/generate`` endpoint.

    Both fields are loosely typed on purpose: prompt presence and bounds are
    checked by :func:`~pixelprompt.core.validation.validate_server_prompt`
    so that every failure produces the same validation envelope, and unknown
    sizes fall back to ``Small`` instead of being rejected.

    Attributes:
        prompt: Free-text prompt (1 to 1000 characters after trimming).
        size: Size label, one of ``Small``, ``Medium`` or ``Large``.
    """

    prompt: str | None = Field(
        default=None,
        description="Text prompt describing the image to generate.",
    )
    size: str | None = Field(
        default="Small",
        description="Size label: 'Small' (256x256), 'Medium' (512x512) or 'Large' (1024x1024).",
    )


class ImageRecord(_WireModel):
    """A persisted gallery image as returned by the API."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    prompt: str
    image_url: str = Field(alias="imageUrl")
    external_media_id: str | None = Field(default=None, alias="cloudinaryId")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")


class GeneratedImage(_WireModel):
    """Hosted URL and media identifier of a freshly generated image."""

    image_url: str = Field(alias="imageUrl")
    external_media_id: str | None = Field(default=None, alias="cloudinaryId")


class Pagination(_WireModel):
    """Pagination metadata.

    ``total`` is the number of records in this page and ``has_more`` is
    ``True`` whenever the page came back full, so a collection whose size is
    an exact multiple of ``limit`` reports one extra, empty page.
    """

    page: int
    limit: int
    total: int
    has_more: bool = Field(alias="hasMore")


class GalleryPage(_WireModel):
    """One page of gallery images."""

    images: list[ImageRecord] = Field(default_factory=list)
    pagination: Pagination
