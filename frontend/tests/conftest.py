"""Shared fixtures for the web UI tests."""
from io import BytesIO

import pytest
from PIL import Image

from backend.models.generation import GenerationResult
from backend.utils.preprocess import encode_base64
from frontend import app as web
from frontend.controller import TryOnController

RESULT_BYTES = b"\x89PNG\r\n\x1a\ngenerated"
REFINED_BYTES = b"\x89PNG\r\n\x1a\nrefined"


class FakeGenerationClient:
    """Records calls; returns canned results or raises."""

    def __init__(self):
        self.try_on_calls = []
        self.refine_calls = []
        self.try_on_result = GenerationResult(image_base64=encode_base64(RESULT_BYTES), text="Looks great")
        self.refine_result = GenerationResult(image_base64=encode_base64(REFINED_BYTES))
        self.error = None

    def perform_virtual_try_on(self, person_b64, clothing_b64, person_mime, clothing_mime):
        self.try_on_calls.append((person_b64, clothing_b64, person_mime, clothing_mime))
        if self.error is not None:
            raise self.error
        return self.try_on_result

    def refine_image(self, image_b64, mime_type, user_prompt):
        self.refine_calls.append((image_b64, mime_type, user_prompt))
        if self.error is not None:
            raise self.error
        return self.refine_result


def make_png(color='red', size=(32, 48)):
    buf = BytesIO()
    Image.new('RGB', size, color=color).save(buf, format='PNG')
    return buf.getvalue()


@pytest.fixture
def fake_client():
    return FakeGenerationClient()


@pytest.fixture
def controller(fake_client):
    return TryOnController(fake_client)


@pytest.fixture
def person_png():
    return make_png('white')


@pytest.fixture
def clothing_png():
    return make_png('blue')


@pytest.fixture
def web_client(fake_client):
    """Flask test client wired to the fake generation client."""
    web.app.config.update(TESTING=True, GENERATION_CLIENT=fake_client)
    web.CONTROLLERS.clear()
    with web.app.test_client() as client:
        yield client
    web.CONTROLLERS.clear()
    web.app.config.pop('GENERATION_CLIENT', None)
