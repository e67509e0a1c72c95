"""Validation and sanitisation utilities for prompts, sizes, and pagination.

Two prompt contracts live side by side:

- :func:`validate_prompt` is the strict client-side check (3 to 1000
  characters, no markup/script injection patterns).
- :func:`validate_server_prompt` is the looser server-side check (1 to 1000
  characters).

Both raise :class:`~pixelprompt.core.errors.AppError` with
``ErrorKind.VALIDATION`` so the retry wrapper never retries them.
"""

from __future__ import annotations

import logging
import re

from pixelprompt.core.errors import validation_error

logger = logging.getLogger(__name__)

PROMPT_MAX_LENGTH = 1000
CLIENT_PROMPT_MIN_LENGTH = 3
SERVER_PROMPT_MIN_LENGTH = 1

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 8
MIN_LIMIT = 1
MAX_LIMIT = 100

# Size label -> pixel dimensions understood by the generation provider.
IMAGE_SIZES: dict[str, str] = {
    "Small": "256x256",
    "Medium": "512x512",
    "Large": "1024x1024",
}
DEFAULT_IMAGE_SIZE = "Small"

# Markup and script injection patterns rejected in client prompts.  This is
# defence in depth only; rendering code must still encode output.
HARMFUL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"<iframe\b[^>]*>", re.IGNORECASE),
    re.compile(r"<object\b[^>]*>", re.IGNORECASE),
    re.compile(r"<embed\b[^>]*>", re.IGNORECASE),
)

IMAGE_URL_PATTERN = re.compile(r"^https?://.+\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)

_WHITESPACE_RUN = re.compile(r"\s+")
_ANGLE_BRACKETS = re.compile(r"[<>]")


def _check_prompt_length(prompt: object, min_length: int) -> str:
    """Shared presence and length checks.  Returns the trimmed prompt."""
    if not isinstance(prompt, str):
        raise validation_error("Prompt is required and must be a non-empty string")

    trimmed = prompt.strip()
    unit = "character" if min_length == 1 else "characters"

    if not trimmed:
        raise validation_error(
            f"Prompt cannot be empty; it must be at least {min_length} {unit} long"
        )
    if len(trimmed) < min_length:
        raise validation_error(f"Prompt must be at least {min_length} {unit} long")
    if len(trimmed) > PROMPT_MAX_LENGTH:
        raise validation_error(f"Prompt cannot exceed {PROMPT_MAX_LENGTH} characters")

    return trimmed


def validate_prompt(prompt: object) -> str:
    """Validate a prompt before it leaves the client.

    Args:
        prompt: Raw user input.

    Returns:
        The trimmed prompt.

    Raises:
        AppError: ``VALIDATION`` when the prompt is missing, not text, outside
            3 to 1000 characters after trimming, or contains markup/script
            injection patterns.
    """
    trimmed = _check_prompt_length(prompt, CLIENT_PROMPT_MIN_LENGTH)

    for pattern in HARMFUL_PATTERNS:
        if pattern.search(trimmed):
            raise validation_error("Prompt contains potentially harmful content")

    return trimmed


def validate_server_prompt(prompt: object) -> str:
    """Validate a prompt received by the server (1 to 1000 characters).

    Returns:
        The trimmed prompt.
    """
    return _check_prompt_length(prompt, SERVER_PROMPT_MIN_LENGTH)


def sanitize_prompt(prompt: str) -> str:
    """Clean a prompt before sending it to the server.

    Angle brackets are removed, whitespace runs collapse to a single space,
    the result is trimmed and truncated to the maximum prompt length.
    Applying the function twice gives the same result as applying it once.
    """
    cleaned = _ANGLE_BRACKETS.sub("", prompt)
    cleaned = _WHITESPACE_RUN.sub(" ", cleaned).strip()
    return cleaned[:PROMPT_MAX_LENGTH].rstrip()


def validate_image_size(size: object) -> str:
    """Strict client-side size check.

    Raises:
        AppError: ``VALIDATION`` unless ``size`` is one of the size labels.
    """
    if not isinstance(size, str) or size not in IMAGE_SIZES:
        raise validation_error(
            f"Invalid image size. Must be one of: {', '.join(IMAGE_SIZES)}"
        )
    return size  # type: ignore[return-value]


def resolve_image_size(size: object) -> str:
    """Map a size label to pixel dimensions.

    Unknown labels fall back to the smallest size instead of failing.
    """
    if isinstance(size, str) and size in IMAGE_SIZES:
        return IMAGE_SIZES[size]

    logger.info(f"Unrecognised image size {size!r}, falling back to {DEFAULT_IMAGE_SIZE}")
    return IMAGE_SIZES[DEFAULT_IMAGE_SIZE]


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_pagination(page: object = DEFAULT_PAGE, limit: object = DEFAULT_LIMIT) -> tuple[int, int]:
    """Validate pagination parameters.

    Returns:
        ``(page, limit)`` unchanged.

    Raises:
        AppError: ``VALIDATION`` if ``page`` is not a positive integer or
            ``limit`` is not an integer between 1 and 100.
    """
    if not _is_int(page) or page < 1:  # type: ignore[operator]
        raise validation_error("Page must be a positive integer", page=page)

    if not _is_int(limit) or not MIN_LIMIT <= limit <= MAX_LIMIT:  # type: ignore[operator]
        raise validation_error(f"Limit must be between {MIN_LIMIT} and {MAX_LIMIT}", limit=limit)

    return page, limit  # type: ignore[return-value]


def normalize_https(url: str) -> str:
    """Force a secure scheme on an ``http:`` URL."""
    if url.startswith("http:"):
        return "https:" + url[len("http:") :]
    return url


def validate_image_url(url: object) -> str:
    """Check that ``url`` is an absolute http(s) URL pointing at an image file."""
    if not isinstance(url, str) or not IMAGE_URL_PATTERN.match(url.strip()):
        raise validation_error("Image URL must be a valid image URL")
    return url.strip()
