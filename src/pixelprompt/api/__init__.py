"""PixelPrompt FastAPI REST API layer.

Modules
-------
main
    Application factory with all route handlers, exception handlers, and
    the ``main()`` CLI entry point.
models
    Pydantic models for API request and response payloads.
gallery_store
    SQLAlchemy-backed image store and gallery pagination helper.
generation
    Orchestration of prompt validation, generation, hosting, and storage.
middleware
    Security headers, request logging, and per-address rate limiting.
"""
