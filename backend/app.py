"""Virtual try-on backend: Gemini proxy service.

FastAPI application that forwards image generation requests to the
Gemini API so the browser never sees the API key:
- Bearer token added server side
- Outbound calls rate limited (one at a time, ~10 per minute)
- Upstream status, content type and body relayed verbatim

Enhanced with:
- Structured logging
- Error handling
- Request tracking
- Environment configuration
"""

import os
import time
import logging
from typing import Optional, Tuple

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request, Depends
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from backend.utils.ratelimit import Limiter, get_limiter


# ============================================================================
# CONFIGURATION
# ============================================================================

load_dotenv()

APP_NAME = os.getenv("APP_NAME", "Virtual Try-On Proxy")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
LOG_FILE = os.getenv("LOG_FILE")

# Unset means no upstream timeout; image generation can take minutes
PROXY_TIMEOUT_SECS = float(os.environ["PROXY_TIMEOUT_SECS"]) if os.getenv("PROXY_TIMEOUT_SECS") else None

PROXY_PATH = "/api/tryon"
QUOTA_EXCEEDED_MESSAGE = (
    "Quota exceeded. Please wait and try again later, "
    "or upgrade your Google Cloud billing plan."
)


# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

_handlers = [logging.StreamHandler()]
if LOG_FILE:
    os.makedirs(os.path.dirname(LOG_FILE) or ".", exist_ok=True)
    _handlers.append(logging.FileHandler(LOG_FILE))

logging.basicConfig(
    level=logging.DEBUG if DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=_handlers,
)

logger = logging.getLogger(__name__)


# ============================================================================
# MIDDLEWARE
# ============================================================================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests with timing information."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        logger.info(f"Request: {request.method} {request.url.path}")

        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)

        logger.info(f"Response: {request.method} {request.url.path} - {response.status_code} - {process_time:.3f}s")

        return response


# ============================================================================
# INITIALIZE FASTAPI APP
# ============================================================================

app = FastAPI(
    title=APP_NAME,
    description="Rate-limited proxy in front of the Gemini image generation API",
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(RequestLoggingMiddleware)

# Every non-POST on the proxy path, CORS preflight included, must get 405.


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions with consistent format."""
    logger.error(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")
    if exc.status_code == 405 and request.url.path == PROXY_PATH:
        return method_not_allowed()
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "status": "error",
            "error": {
                "code": exc.status_code,
                "message": exc.detail,
                "path": str(request.url.path),
            }
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors."""
    errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]

    logger.warning(f"Validation error on {request.url.path}: {errors}")

    return JSONResponse(
        status_code=422,
        content={
            "status": "error",
            "error": {
                "code": 422,
                "message": "Validation error",
                "details": errors,
            }
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error on {request.url.path}: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "status": "error",
            "error": {
                "code": 500,
                "message": "Internal server error" if not DEBUG else str(exc),
            }
        }
    )


def method_not_allowed() -> PlainTextResponse:
    return PlainTextResponse("Method Not Allowed", status_code=405, headers={"Allow": "POST"})


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_proxy_settings() -> Tuple[Optional[str], Optional[str]]:
    """Read the upstream URL and key at call time."""
    return os.getenv("GEMINI_API_URL"), os.getenv("GEMINI_API_KEY")


async def get_http_client():
    async with httpx.AsyncClient(timeout=PROXY_TIMEOUT_SECS) as client:
        yield client


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.get("/")
def root():
    """Health check endpoint.

    Returns basic information about the API status and version.
    """
    logger.info("Health check accessed")
    return {
        "status": "ok",
        "message": f"{APP_NAME} backend is running",
        "version": APP_VERSION,
        "endpoints": {
            "docs": "/docs",
            "proxy": PROXY_PATH,
        }
    }


@app.api_route(
    PROXY_PATH,
    methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
)
async def gemini_proxy(
    request: Request,
    settings: Tuple[Optional[str], Optional[str]] = Depends(get_proxy_settings),
    limiter: Limiter = Depends(get_limiter),
    http_client: httpx.AsyncClient = Depends(get_http_client),
):
    """Forward a generateContent body to the Gemini API.

    The JSON body is sent as-is with the server's bearer token. Calls share
    the process-wide limiter, so concurrent requests queue rather than fail.

    Returns:
        - 405 for anything but POST
        - 500 when GEMINI_API_URL or GEMINI_API_KEY is missing
        - 429 with a quota message when Gemini rate limits us
        - the upstream status with an error envelope for other failures
        - otherwise the upstream status, content type and body bytes
    """
    if request.method != "POST":
        return method_not_allowed()

    try:
        gemini_url, gemini_key = settings
        if not gemini_url or not gemini_key:
            logger.error("Proxy called without GEMINI_API_URL or GEMINI_API_KEY configured")
            return JSONResponse(
                status_code=500,
                content={"error": "Missing GEMINI_API_URL or GEMINI_API_KEY"},
            )

        raw_body = await request.body()
        payload = await request.json()
        logger.debug(f"Incoming request body for Gemini API: {len(raw_body)} bytes")

        upstream = await limiter.schedule(
            http_client.post,
            gemini_url,
            json=payload,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {gemini_key}",
            },
        )

        content_type = upstream.headers.get("content-type", "application/json")

        if upstream.status_code == 429:
            logger.error(f"Gemini API quota exceeded: {upstream.text}")
            return JSONResponse(
                status_code=429,
                content={"error": QUOTA_EXCEEDED_MESSAGE, "details": upstream.text},
            )

        if not upstream.is_success:
            logger.error(f"Gemini API error {upstream.status_code}: {upstream.text}")
            return JSONResponse(
                status_code=upstream.status_code,
                content={"error": "API error occurred", "details": upstream.text},
            )

        logger.info(f"Gemini API responded {upstream.status_code} ({len(upstream.content)} bytes)")
        return Response(
            content=upstream.content,
            status_code=upstream.status_code,
            headers={"Content-Type": content_type},
        )

    except Exception as e:
        logger.exception("Proxy error")
        return JSONResponse(
            status_code=500,
            content={"error": "Server error", "details": str(e)},
        )


# ============================================================================
# APPLICATION STARTUP
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting {APP_NAME} v{APP_VERSION}")
    logger.info(f"Debug mode: {DEBUG}")
    uvicorn.run(
        "backend.app:app",
        host=HOST,
        port=PORT,
        reload=DEBUG,
        log_level="debug" if DEBUG else "info"
    )
