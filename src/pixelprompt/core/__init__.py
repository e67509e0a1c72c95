"""Core building blocks shared by the server and the client.

- **config**: Environment-based configuration using Pydantic Settings
  (``PIXELPROMPT_`` prefix) and logging setup.
- **errors**: The tagged :class:`~pixelprompt.core.errors.AppError` taxonomy.
- **validation**: Prompt, size, pagination, and image URL checks.
- **retry**: Retry-with-backoff wrapper built on tenacity.
- **providers**: OpenAI image generation and Cloudinary hosting adapters.
"""

from pixelprompt.core.errors import AppError, ErrorKind
from pixelprompt.core.retry import RetryPolicy, with_retry

__all__ = [
    "AppError",
    "ErrorKind",
    "RetryPolicy",
    "with_retry",
]
