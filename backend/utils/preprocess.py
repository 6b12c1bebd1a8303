"""Image encoding helpers.

Uploaded images travel to the generation provider as base64 text and back
to the browser as data URLs.
"""
import base64
import binascii
from io import BytesIO
from typing import Tuple

from PIL import Image, UnidentifiedImageError


def encode_base64(image_bytes: bytes) -> str:
    return base64.b64encode(image_bytes).decode('ascii')


def decode_base64(text: str) -> bytes:
    try:
        return base64.b64decode(text, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e


def to_data_url(image_base64: str, mime_type: str) -> str:
    return f"data:{mime_type};base64,{image_base64}"


def split_data_url(data_url: str) -> Tuple[str, str]:
    """Split ``data:<mime>;base64,<payload>`` into ``(mime, payload)``."""
    header, sep, payload = data_url.partition(',')
    if not sep or not header.startswith('data:') or not header.endswith(';base64'):
        raise ValueError("Not a base64 data URL")
    mime_type = header[len('data:'):-len(';base64')] or 'application/octet-stream'
    return mime_type, payload


def guess_mime_type(image_bytes: bytes, default: str = 'image/png') -> str:
    """Return the MIME type of the encoded image, or ``default`` if unknown."""
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            return Image.MIME.get(img.format, default)
    except (UnidentifiedImageError, OSError):
        return default
