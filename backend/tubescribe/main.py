"""
Main FastAPI application for TubeScribe.
"""
import logging
import time
from datetime import datetime
from typing import Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.endpoints import transcript
from .audio_processor import AudioProcessor
from .config import Settings, get_settings, get_transcript_strategy, is_api_key_configured
from .errors import TranscriptServiceError
from .logging_config import setup_logging
from .models import TranscriptResult

_MODULE_IMPORT_STARTED = time.perf_counter()
logger = logging.getLogger('tubescribe.api')
settings = get_settings()


def build_cors_headers(active: Settings) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": active.cors_allow_origin.strip() or "*",
        "Access-Control-Allow-Headers": "Content-Type, X-API-Key",
        "Access-Control-Allow-Methods": "POST, OPTIONS",
    }


CORS_HEADERS = build_cors_headers(settings)

# FastAPI application instance
app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    debug=settings.debug,
)

app.include_router(transcript.router, prefix="/api", tags=["Transcript"])


@app.middleware("http")
async def cors_and_preflight(request: Request, call_next):
    """Answer every OPTIONS request with 204 and add CORS headers to every response."""
    if request.method == "OPTIONS":
        response = Response(status_code=204)
    else:
        response = await call_next(request)
    response.headers.update(CORS_HEADERS)
    return response


def _error_response(status_code: int, message: str, video_id=None, headers=None) -> JSONResponse:
    body = TranscriptResult(success=False, error=message, video_id=video_id).to_response()
    return JSONResponse(status_code=status_code, content=body, headers=headers)


@app.exception_handler(TranscriptServiceError)
async def transcript_error_handler(request: Request, exc: TranscriptServiceError):
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"[API] {exc.kind} status={exc.status_code} video={exc.video_id} "
        f"retryable={exc.retryable} detail={exc.detail}"
    )
    return _error_response(exc.status_code, exc.public_message, exc.video_id)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 405:
        message = "Method not allowed"
    elif exc.status_code == 404:
        message = "Not found"
    else:
        message = str(exc.detail)
    return _error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"[API] request validation failed: {exc.errors()[:1]}")
    return _error_response(400, "Invalid request body")


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup."""
    start_ts = time.perf_counter()
    setup_logging(settings.log_level, settings.log_file)
    logger.info(f"Starting {settings.app_name} {settings.version}...")
    logger.info(f"Transcript strategy: {get_transcript_strategy(settings)}")
    logger.info(f"Caption strategies: {', '.join(settings.caption_strategy_list)}")
    logger.info(f"Audio source: {settings.audio_source}, transcription backend: {settings.transcription_backend}")
    if not is_api_key_configured(settings):
        logger.error("API_KEY is not set; every transcript request will be rejected")
    logger.info(
        "[STARTUP] complete elapsed=%.3fs since_import=%.3fs",
        time.perf_counter() - start_ts,
        time.perf_counter() - _MODULE_IMPORT_STARTED,
    )


@app.get("/")
async def root():
    """Root endpoint - service description."""
    return {
        "message": f"Welcome to {settings.app_name} - YouTube transcript service",
        "version": settings.version,
        "strategy": get_transcript_strategy(settings),
        "status": "running",
        "timestamp": datetime.now().isoformat()
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {
        "status": "OK",
        "ffmpeg": AudioProcessor(settings).verify_ffmpeg(),
        "timestamp": datetime.now().isoformat(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "backend.tubescribe.main:app",
        host="127.0.0.1",
        port=8001,
        reload=settings.debug
    )
