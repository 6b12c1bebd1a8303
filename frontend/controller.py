"""UI controller for the virtual try-on page.

Owns everything the page shows: the two uploaded images, the generated
result, the refinement prompt and any error. ``status`` says whether a
generation or refinement is in flight; while it is, further triggers are
ignored. A per-controller lock makes that check atomic when two requests
for the same browser arrive together.
"""
import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional, Tuple

from backend.models.generation import GenerationClient, GenerationError
from backend.utils.preprocess import decode_base64, encode_base64, split_data_url, to_data_url

logger = logging.getLogger(__name__)

DOWNLOAD_FILENAME = "virtual-try-on-result.png"
RESULT_MIME_TYPE = "image/png"
IMAGE_KINDS = ("person", "clothing")

MISSING_IMAGES_MESSAGE = "Please upload both a person and a clothing image."
MISSING_REFINE_INPUT_MESSAGE = "Cannot refine without a result image and a prompt."
NO_IMAGE_MESSAGE = "The AI model did not return an image. Please try again with different images."
NO_REFINED_IMAGE_MESSAGE = "The AI model did not return a refined image."


class MissingOutputError(GenerationError):
    """The model answered but did not include an image."""


class Status(enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    REFINING = "refining"
    ERROR = "error"


@dataclass
class UploadedFile:
    filename: str
    mime_type: str
    data: bytes


@dataclass
class ImageState:
    preview: str
    file: UploadedFile


@dataclass
class TryOnState:
    status: Status = Status.IDLE
    person: Optional[ImageState] = None
    clothing: Optional[ImageState] = None
    result: Optional[str] = None
    error: Optional[str] = None
    refine_prompt: str = field(default="")


class TryOnController:
    """Drives uploads, generation, refinement and reset for one browser."""

    def __init__(self, client: GenerationClient):
        self.client = client
        self.state = TryOnState()
        self._lock = threading.Lock()

    @property
    def is_loading(self) -> bool:
        return self.state.status is Status.LOADING

    @property
    def is_refining(self) -> bool:
        return self.state.status is Status.REFINING

    @property
    def is_busy(self) -> bool:
        return self.is_loading or self.is_refining

    @property
    def can_generate(self) -> bool:
        return bool(self.state.person and self.state.clothing) and not self.is_loading

    @property
    def can_refine(self) -> bool:
        return not self.is_refining and bool(self.state.refine_prompt.strip())

    def _fail(self, message: str) -> None:
        self.state.error = message
        self.state.status = Status.ERROR

    def upload(self, kind: str, data: bytes, mime_type: str, filename: str = "") -> ImageState:
        """Store an uploaded image and its preview, replacing any previous one."""
        if kind not in IMAGE_KINDS:
            raise ValueError(f"kind must be one of: {', '.join(IMAGE_KINDS)}")

        image = ImageState(
            preview=to_data_url(encode_base64(data), mime_type),
            file=UploadedFile(filename=filename, mime_type=mime_type, data=data),
        )
        setattr(self.state, kind, image)
        logger.info(f"Stored {kind} image {filename!r} ({mime_type}, {len(data)} bytes)")
        return image

    def set_refine_prompt(self, prompt: str) -> None:
        self.state.refine_prompt = prompt

    def generate(self) -> None:
        """Run the virtual try-on on the two uploaded images."""
        if not self._lock.acquire(blocking=False):
            logger.warning("Generate ignored: a request is already in flight")
            return
        try:
            if self.is_busy:
                logger.warning("Generate ignored: a request is already in flight")
                return
            self._generate()
        finally:
            self._lock.release()

    def _generate(self) -> None:
        person, clothing = self.state.person, self.state.clothing
        if not person or not clothing:
            self._fail(MISSING_IMAGES_MESSAGE)
            return

        self.state.status = Status.LOADING
        self.state.error = None
        self.state.result = None

        try:
            result = self.client.perform_virtual_try_on(
                encode_base64(person.file.data),
                encode_base64(clothing.file.data),
                person.file.mime_type,
                clothing.file.mime_type,
            )
            if not result.image_base64:
                raise MissingOutputError(NO_IMAGE_MESSAGE)
            self.state.result = to_data_url(result.image_base64, RESULT_MIME_TYPE)
            self.state.status = Status.IDLE
        except Exception as e:
            logger.error(f"Virtual try-on failed: {e}")
            self._fail(f"Failed to generate image: {e}")
        finally:
            if self.is_loading:
                self.state.status = Status.IDLE

    def refine(self, prompt: Optional[str] = None) -> None:
        """Edit the current result with the refinement prompt."""
        if not self._lock.acquire(blocking=False):
            logger.warning("Refine ignored: a request is already in flight")
            return
        try:
            if self.is_busy:
                logger.warning("Refine ignored: a request is already in flight")
                return
            if prompt is not None:
                self.state.refine_prompt = prompt
            self._refine()
        finally:
            self._lock.release()

    def _refine(self) -> None:
        if not self.state.result or not self.state.refine_prompt.strip():
            self._fail(MISSING_REFINE_INPUT_MESSAGE)
            return

        self.state.status = Status.REFINING
        self.state.error = None

        try:
            _, current_image = split_data_url(self.state.result)
            result = self.client.refine_image(current_image, RESULT_MIME_TYPE, self.state.refine_prompt)
            if not result.image_base64:
                raise MissingOutputError(NO_REFINED_IMAGE_MESSAGE)
            self.state.result = to_data_url(result.image_base64, RESULT_MIME_TYPE)
            self.state.refine_prompt = ""
            self.state.status = Status.IDLE
        except Exception as e:
            logger.error(f"Refinement failed: {e}")
            self._fail(f"Failed to refine image: {e}")
        finally:
            if self.is_refining:
                self.state.status = Status.IDLE

    def download(self) -> Optional[Tuple[str, bytes]]:
        """Return ``(filename, png bytes)`` for the current result, if any."""
        if not self.state.result:
            return None
        _, payload = split_data_url(self.state.result)
        return DOWNLOAD_FILENAME, decode_base64(payload)

    def start_over(self) -> None:
        self.state = TryOnState()
        logger.info("State reset")
