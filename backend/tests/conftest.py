"""Shared fixtures for the backend tests."""
import time
from io import BytesIO

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image, ImageDraw

from backend.app import app, get_http_client
from backend.utils.ratelimit import Limiter, get_limiter

GEMINI_TEST_URL = "https://gemini.test/v1beta/models/gemini-2.5-flash-image-preview:generateContent"


class UpstreamRecorder:
    """Stands in for the Gemini API behind an httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.started_at = []
        self.response = httpx.Response(200, json={"candidates": []})
        self.error = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.started_at.append(time.monotonic())
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def upstream():
    return UpstreamRecorder()


@pytest.fixture
def gemini_env(monkeypatch):
    monkeypatch.setenv("GEMINI_API_URL", GEMINI_TEST_URL)
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")


@pytest.fixture
def limiter():
    return Limiter(max_concurrent=1, min_time=0)


@pytest.fixture
def client(upstream, limiter):
    """Provide a TestClient whose upstream calls hit the recorder."""
    async def override_http_client():
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as http_client:
            yield http_client

    app.dependency_overrides[get_http_client] = override_http_client
    app.dependency_overrides[get_limiter] = lambda: limiter
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def sample_person_image():
    """Generate a simple test image with a person silhouette."""
    img = Image.new('RGB', (640, 480), color='white')
    draw = ImageDraw.Draw(img)
    draw.ellipse([300, 80, 340, 120], fill='black')  # head
    draw.rectangle([310, 120, 330, 280], fill='black')  # torso
    draw.rectangle([300, 280, 315, 380], fill='black')  # left leg
    draw.rectangle([325, 280, 340, 380], fill='black')  # right leg

    buf = BytesIO()
    img.save(buf, format='JPEG', quality=85)
    return buf.getvalue()


@pytest.fixture
def sample_garment_image():
    """Generate a simple test garment image."""
    img = Image.new('RGB', (200, 300), color='lightblue')
    draw = ImageDraw.Draw(img)
    draw.rectangle([50, 50, 150, 250], fill='blue', outline='darkblue')

    buf = BytesIO()
    img.save(buf, format='PNG')
    return buf.getvalue()
