"""Tests for pixelprompt.core.providers - OpenAI and Cloudinary adapters.

Neither SDK performs real network calls here: the OpenAI client is replaced
by a mock and ``cloudinary.uploader.upload`` is monkeypatched.
"""

from __future__ import annotations

import asyncio
import time
from types import SimpleNamespace
from unittest.mock import AsyncMock

import cloudinary.exceptions
import cloudinary.uploader
import httpx
import openai
import pytest

from pixelprompt.core.errors import AppError, ErrorKind
from pixelprompt.core.providers import CloudinaryMediaHost, HostedImage, OpenAIImageGenerator

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/images/generations")


def _openai_client(side_effect=None, data=None) -> SimpleNamespace:
    generate = AsyncMock(side_effect=side_effect, return_value=SimpleNamespace(data=data))
    return SimpleNamespace(images=SimpleNamespace(generate=generate))


# ---------------------------------------------------------------------------
# OpenAI.
# ---------------------------------------------------------------------------


class TestOpenAIImageGenerator:
    """Request shape and error mapping."""

    def test_requests_one_image(self):
        client = _openai_client(data=[SimpleNamespace(url="https://oaidalle.example.com/a.png")])
        generator = OpenAIImageGenerator("sk-test", model="dall-e-2", client=client)

        url = asyncio.run(generator.generate("A castle at sunset", "512x512"))

        assert url == "https://oaidalle.example.com/a.png"
        client.images.generate.assert_awaited_once_with(
            model="dall-e-2",
            prompt="A castle at sunset",
            n=1,
            size="512x512",
        )

    def test_empty_data_returns_none(self):
        generator = OpenAIImageGenerator("sk-test", client=_openai_client(data=[]))
        assert asyncio.run(generator.generate("castle", "256x256")) is None

    @pytest.mark.parametrize(
        "error, kind",
        [
            (openai.APITimeoutError(request=_REQUEST), ErrorKind.TIMEOUT),
            (openai.APIConnectionError(request=_REQUEST), ErrorKind.NETWORK),
            (openai.OpenAIError("content policy violation"), ErrorKind.EXTERNAL_SERVICE),
        ],
    )
    def test_error_mapping(self, error, kind):
        generator = OpenAIImageGenerator("sk-test", client=_openai_client(side_effect=error))

        with pytest.raises(AppError) as exc_info:
            asyncio.run(generator.generate("castle", "256x256"))

        assert exc_info.value.kind is kind
        assert exc_info.value.__cause__ is error

    def test_provider_named_in_message(self):
        error = openai.OpenAIError("content policy violation")
        generator = OpenAIImageGenerator("sk-test", client=_openai_client(side_effect=error))

        with pytest.raises(AppError) as exc_info:
            asyncio.run(generator.generate("castle", "256x256"))

        assert exc_info.value.provider == "OpenAI"
        assert exc_info.value.message == "OpenAI service error: content policy violation"

    def test_aclose_closes_client(self):
        client = _openai_client()
        client.close = AsyncMock()
        asyncio.run(OpenAIImageGenerator("sk-test", client=client).aclose())
        client.close.assert_awaited_once()


# ---------------------------------------------------------------------------
# Cloudinary.
# ---------------------------------------------------------------------------


class TestCloudinaryMediaHost:
    """Upload options, result parsing and error mapping."""

    def _host(self, **kwargs) -> CloudinaryMediaHost:
        return CloudinaryMediaHost("demo", "key", "secret", **kwargs)

    def test_upload_options(self, monkeypatch):
        captured = {}

        def fake_upload(source, **options):
            captured["source"] = source
            captured.update(options)
            return {
                "url": "http://res.cloudinary.com/demo/image/upload/ai-generated-images/a.png",
                "public_id": "ai-generated-images/a",
            }

        monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)

        hosted = asyncio.run(self._host().upload("https://oaidalle.example.com/a.png", folder="ai-generated-images"))

        assert hosted == HostedImage(
            url="http://res.cloudinary.com/demo/image/upload/ai-generated-images/a.png",
            public_id="ai-generated-images/a",
        )
        assert captured["source"] == "https://oaidalle.example.com/a.png"
        assert captured["folder"] == "ai-generated-images"
        assert captured["resource_type"] == "image"
        assert captured["quality"] == "auto"
        assert captured["fetch_format"] == "auto"
        assert captured["cloud_name"] == "demo"
        assert captured["api_key"] == "key"
        assert captured["api_secret"] == "secret"

    def test_secure_url_preferred(self, monkeypatch):
        monkeypatch.setattr(
            cloudinary.uploader,
            "upload",
            lambda source, **options: {
                "url": "http://res.cloudinary.com/demo/a.png",
                "secure_url": "https://res.cloudinary.com/demo/a.png",
                "public_id": "a",
            },
        )
        hosted = asyncio.run(self._host().upload("https://x.example.com/a.png", folder="f"))
        assert hosted.url == "https://res.cloudinary.com/demo/a.png"

    def test_sdk_error_is_external_service(self, monkeypatch):
        def failing_upload(source, **options):
            raise cloudinary.exceptions.Error("Invalid image file")

        monkeypatch.setattr(cloudinary.uploader, "upload", failing_upload)

        with pytest.raises(AppError) as exc_info:
            asyncio.run(self._host().upload("https://x.example.com/a.png", folder="f"))

        assert exc_info.value.kind is ErrorKind.EXTERNAL_SERVICE
        assert exc_info.value.message == "Cloudinary service error: Invalid image file"

    def test_missing_url_in_response(self, monkeypatch):
        monkeypatch.setattr(cloudinary.uploader, "upload", lambda source, **options: {"public_id": "a"})
        with pytest.raises(AppError) as exc_info:
            asyncio.run(self._host().upload("https://x.example.com/a.png", folder="f"))
        assert exc_info.value.provider == "Cloudinary"

    def test_slow_upload_times_out(self, monkeypatch):
        def slow_upload(source, **options):
            time.sleep(0.3)
            return {"url": "https://res.cloudinary.com/demo/a.png", "public_id": "a"}

        monkeypatch.setattr(cloudinary.uploader, "upload", slow_upload)

        with pytest.raises(AppError) as exc_info:
            asyncio.run(self._host(timeout=0.05).upload("https://x.example.com/a.png", folder="f"))

        assert exc_info.value.kind is ErrorKind.TIMEOUT
