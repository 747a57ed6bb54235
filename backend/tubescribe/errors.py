"""
Error taxonomy for the transcript service.

Every failure that can reach a caller is one of these classes. Each carries the
HTTP status it maps to and the message the caller is allowed to see; anything
more detailed stays in the server log.
"""
from typing import Optional


class TranscriptServiceError(Exception):
    """Base class for classified failures."""

    kind = "Unclassified"
    status_code = 500
    public_message = "Failed to transcribe video"
    retryable = False

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        video_id: Optional[str] = None,
        status_code: Optional[int] = None,
        public_message: Optional[str] = None,
    ):
        super().__init__(detail or self.public_message)
        self.detail = detail or self.public_message
        self.video_id = video_id
        if status_code is not None:
            self.status_code = status_code
        if public_message is not None:
            self.public_message = public_message


class MissingCredential(TranscriptServiceError):
    kind = "MissingCredential"
    status_code = 401
    public_message = "API key is required"


class InvalidCredential(TranscriptServiceError):
    kind = "InvalidCredential"
    status_code = 401
    public_message = "Invalid API key"


class MissingInput(TranscriptServiceError):
    kind = "MissingInput"
    status_code = 400
    public_message = "YouTube URL is required"


class InvalidInput(TranscriptServiceError):
    kind = "InvalidInput"
    status_code = 400
    public_message = "Invalid YouTube URL"


class VideoTooLong(TranscriptServiceError):
    kind = "VideoTooLong"
    status_code = 400
    public_message = "Video is too long to transcribe"


class VideoNotAccessible(TranscriptServiceError):
    """Private, removed or region-blocked video.

    Removed videos map to 404, every other cause to 403.
    """

    kind = "VideoNotAccessible"
    status_code = 403
    public_message = "Video is not accessible or may be private"

    def __init__(self, detail: Optional[str] = None, *, removed: bool = False, **kwargs):
        if removed:
            kwargs.setdefault("status_code", 404)
            kwargs.setdefault("public_message", "Video is unavailable or has been removed")
        super().__init__(detail, **kwargs)
        self.removed = removed


class NoCaptionsAvailable(TranscriptServiceError):
    kind = "NoCaptionsAvailable"
    status_code = 404
    public_message = "No captions available for this video"


class TranscriptFetchFailed(TranscriptServiceError):
    kind = "TranscriptFetchFailed"
    status_code = 500
    public_message = "Failed to fetch transcript"


class TranscriptEmpty(TranscriptServiceError):
    kind = "TranscriptEmpty"
    status_code = 404
    public_message = "Transcript is empty"


class AudioUnavailable(TranscriptServiceError):
    kind = "AudioUnavailable"
    status_code = 404
    public_message = "No audio available for this video"


class AudioDownloadTimeout(TranscriptServiceError):
    kind = "AudioDownloadTimeout"
    status_code = 500
    public_message = "Audio download timed out, please retry"
    retryable = True


class AudioProcessingError(TranscriptServiceError):
    kind = "AudioProcessingError"
    status_code = 500
    public_message = "Failed to process video audio"


class TranscriptionBackendError(TranscriptServiceError):
    kind = "TranscriptionBackendError"
    status_code = 500
    public_message = "Transcription service failed"


class Unclassified(TranscriptServiceError):
    kind = "Unclassified"
