"""Asynchronous client for the PixelPrompt API.

:class:`~pixelprompt.client.service.ImageServiceClient` wraps the HTTP
endpoints with validation and retries, and
:class:`~pixelprompt.client.gallery.GalleryFeed` drives an infinite-scroll
gallery on top of it.
"""

from pixelprompt.client.gallery import GalleryFeed, merge_unique
from pixelprompt.client.service import ImageServiceClient

__all__ = ["GalleryFeed", "ImageServiceClient", "merge_unique"]
