"""PixelPrompt - AI image generation service with a paginated gallery."""

__version__ = "0.1.0"

__all__ = ["__version__"]
