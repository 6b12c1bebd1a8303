"""
Models package for the virtual try-on backend.

This package wraps the external image generation model:
- Fixed try-on and refinement prompts
- Request building and response extraction
- Direct (google-genai) and proxied transports
"""

__version__ = "1.0.0"

from .generation import (
    GenerationClient,
    GenerationError,
    GenerationResult,
    build_client_from_env,
)

__all__ = [
    "GenerationClient",
    "GenerationError",
    "GenerationResult",
    "build_client_from_env",
]
