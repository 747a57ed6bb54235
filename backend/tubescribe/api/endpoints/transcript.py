import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from ...errors import InvalidInput, TranscriptServiceError, Unclassified
from ...models import TranscriptRequest
from ...services.youtube_service import YouTubeTranscriptService, get_transcript_service
from ..auth import require_api_key

logger = logging.getLogger('tubescribe.api')

router = APIRouter(dependencies=[Depends(require_api_key)])


async def _read_body(request: Request) -> TranscriptRequest:
    # Body is read after the router's credential check
    raw = await request.body()
    if not raw.strip():
        return TranscriptRequest()
    try:
        return TranscriptRequest.model_validate_json(raw)
    except ValidationError as e:
        raise InvalidInput(f"malformed request body: {e.errors()[:1]}", public_message="Invalid request body") from e


@router.post("/transcript")
async def get_transcript(
    request: Request,
    service: YouTubeTranscriptService = Depends(get_transcript_service),
):
    """
    Transcribe a YouTube video.
    First tries the video's own captions (fast path).
    If none exist, downloads the audio and transcribes it with Whisper (slow path).
    """
    body = await _read_body(request)
    try:
        result = await service.process_video(body.url)
    except TranscriptServiceError:
        raise
    except Exception as e:
        logger.exception(f"Unclassified failure for url={body.url!r}")
        raise Unclassified(f"{type(e).__name__}: {e}") from e
    return result.to_response()
