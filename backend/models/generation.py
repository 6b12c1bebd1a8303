"""Gemini image generation client.

Builds the multimodal request for a virtual try-on (person + garment) or a
refinement (one image + user instruction), sends it through a transport and
pulls the first image / text parts out of the response.

Two transports exist:

- ``GenAITransport`` talks to Gemini directly with the ``google-genai`` SDK
  and needs ``API_KEY``.
- ``ProxyTransport`` posts the REST body to the backend ``/api/tryon``
  proxy, which holds ``GEMINI_API_KEY`` server side.

Requests and responses are handled in the REST JSON shape
(``inlineData`` / ``mimeType``) regardless of transport.
"""
import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import requests
from google import genai
from google.genai import types
from google.genai.types import Modality

from backend.models.prompts import TRYON_PROMPT, build_refine_prompt
from backend.utils.preprocess import decode_base64, encode_base64

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-image-preview"
RESPONSE_MODALITIES = ["IMAGE", "TEXT"]


class GenerationError(Exception):
    """Base class for generation failures."""


class ConfigurationError(GenerationError):
    """A credential or endpoint needed for the call is not configured."""


class UpstreamError(GenerationError):
    """The provider (or the proxy in front of it) answered with an error."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class GenerationResult:
    image_base64: Optional[str] = None
    text: Optional[str] = None


def build_request(images: Sequence[Tuple[str, str]], prompt: str) -> Dict:
    """Build a ``generateContent`` body from ``(base64, mime_type)`` pairs and a prompt."""
    parts: List[Dict] = [
        {"inlineData": {"data": data, "mimeType": mime_type}}
        for data, mime_type in images
    ]
    parts.append({"text": prompt})
    return {
        "contents": [{"role": "user", "parts": parts}],
        "generationConfig": {"responseModalities": list(RESPONSE_MODALITIES)},
    }


def extract_result(payload: Dict) -> GenerationResult:
    """Take the first inline image and first text part of the first candidate."""
    candidates = payload.get("candidates") or []
    if not candidates:
        return GenerationResult()

    content = candidates[0].get("content") or {}
    image_base64 = None
    text = None
    for part in content.get("parts") or []:
        inline = part.get("inlineData") or part.get("inline_data")
        if inline:
            if image_base64 is None:
                image_base64 = inline.get("data")
        elif part.get("text") and text is None:
            text = part["text"]
    return GenerationResult(image_base64=image_base64, text=text)


def _response_to_payload(response: types.GenerateContentResponse) -> Dict:
    """Convert an SDK response into the REST JSON shape."""
    candidates = []
    for candidate in response.candidates or []:
        parts = []
        content = candidate.content
        for part in (content.parts if content and content.parts else []):
            if part.inline_data is not None and part.inline_data.data is not None:
                parts.append({
                    "inlineData": {
                        "data": encode_base64(part.inline_data.data),
                        "mimeType": part.inline_data.mime_type or "image/png",
                    }
                })
            elif part.text:
                parts.append({"text": part.text})
        candidates.append({"content": {"parts": parts}})
    return {"candidates": candidates}


class GenAITransport:
    """Direct calls to Gemini through the google-genai SDK."""

    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_MODEL, client: Optional[genai.Client] = None):
        self.api_key = api_key
        self.model = model
        self._client = client

    def get_client(self) -> genai.Client:
        """Get or create the SDK client.

        Raises:
            ConfigurationError: If no API key is configured
        """
        if not self.api_key:
            raise ConfigurationError("API_KEY environment variable is not set.")
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def generate(self, body: Dict) -> Dict:
        client = self.get_client()

        parts = []
        for part in body["contents"][0]["parts"]:
            if "inlineData" in part:
                blob = part["inlineData"]
                parts.append(types.Part.from_bytes(data=decode_base64(blob["data"]), mime_type=blob["mimeType"]))
            else:
                parts.append(types.Part.from_text(text=part["text"]))

        config = types.GenerateContentConfig(
            response_modalities=[Modality.IMAGE, Modality.TEXT],
        )
        response = client.models.generate_content(
            model=self.model,
            contents=types.Content(role="user", parts=parts),
            config=config,
        )
        return _response_to_payload(response)


class ProxyTransport:
    """Calls through the backend proxy endpoint."""

    def __init__(self, proxy_url: Optional[str], session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.proxy_url = proxy_url
        self.session = session or requests.Session()
        self.timeout = timeout

    def generate(self, body: Dict) -> Dict:
        if not self.proxy_url:
            raise ConfigurationError("PROXY_URL is not set.")

        response = self.session.post(self.proxy_url, json=body, timeout=self.timeout)
        if not response.ok:
            try:
                envelope = response.json()
                message = envelope.get("error") or response.reason
                if envelope.get("details"):
                    message = f"{message} ({envelope['details']})"
            except ValueError:
                message = response.text or response.reason
            raise UpstreamError(response.status_code, message)
        return response.json()


class GenerationClient:
    """Virtual try-on and refinement calls against an image model."""

    def __init__(self, transport):
        self.transport = transport

    def perform_virtual_try_on(
        self,
        person_image_base64: str,
        clothing_image_base64: str,
        person_mime_type: str,
        clothing_mime_type: str,
    ) -> GenerationResult:
        """Dress the person from the first image in the garment from the second.

        Args:
            person_image_base64: Person photo, base64 encoded
            clothing_image_base64: Garment photo, base64 encoded
            person_mime_type: MIME type of the person photo
            clothing_mime_type: MIME type of the garment photo

        Returns:
            GenerationResult with the first image and text parts, each
            None when the model did not return one
        """
        body = build_request(
            [
                (person_image_base64, person_mime_type),
                (clothing_image_base64, clothing_mime_type),
            ],
            TRYON_PROMPT,
        )
        logger.info(f"Requesting virtual try-on ({person_mime_type} + {clothing_mime_type})")
        result = extract_result(self.transport.generate(body))
        logger.info(f"Virtual try-on returned image={result.image_base64 is not None}, text={result.text is not None}")
        return result

    def refine_image(self, image_base64: str, mime_type: str, user_prompt: str) -> GenerationResult:
        """Edit a previously generated image following a free-text instruction."""
        body = build_request([(image_base64, mime_type)], build_refine_prompt(user_prompt))
        logger.info(f"Requesting refinement: {user_prompt!r}")
        result = extract_result(self.transport.generate(body))
        logger.info(f"Refinement returned image={result.image_base64 is not None}")
        return result


def build_client_from_env() -> GenerationClient:
    """Pick the transport from ``TRYON_MODE`` (``direct`` or ``proxy``)."""
    mode = os.getenv("TRYON_MODE", "direct").strip().lower()
    if mode == "direct":
        transport = GenAITransport(
            api_key=os.getenv("API_KEY"),
            model=os.getenv("GEMINI_MODEL", DEFAULT_MODEL),
        )
    elif mode == "proxy":
        backend_url = os.getenv("BACKEND_URL", "http://localhost:8000").rstrip("/")
        transport = ProxyTransport(os.getenv("PROXY_URL") or f"{backend_url}/api/tryon")
    else:
        raise ValueError(f"TRYON_MODE must be 'direct' or 'proxy', got {mode!r}")
    logger.info(f"Generation client using {mode} mode")
    return GenerationClient(transport)
