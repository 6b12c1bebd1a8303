"""
Utilities package for the virtual try-on backend.

This package contains utility functions for:
- Image encoding (base64, data URLs, MIME sniffing)
- Outbound rate limiting
"""

__version__ = "1.0.0"

from . import preprocess
from . import ratelimit

__all__ = ["preprocess", "ratelimit"]
