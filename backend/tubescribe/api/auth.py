"""
Caller credential check.

Used as a router-level dependency, so it runs before the request body is read
and before any outbound network call.
"""
import logging
import secrets
from typing import Optional

from fastapi import Depends, Header

from ..config import Settings, get_settings, is_api_key_configured
from ..errors import InvalidCredential, MissingCredential

logger = logging.getLogger('tubescribe.api')


async def require_api_key(
    x_api_key: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Validate the X-API-Key header against the configured secret.

    Raises:
        MissingCredential: header absent or blank
        InvalidCredential: header does not match, or no secret is configured
    """
    if x_api_key is None or not x_api_key.strip():
        logger.warning("[AUTH] request rejected: missing API key")
        raise MissingCredential("X-API-Key header missing")

    if not is_api_key_configured(settings):
        logger.error("[AUTH] API_KEY is not configured; rejecting all protected requests")
        raise InvalidCredential("no API key configured on the server")

    if not secrets.compare_digest(x_api_key.strip().encode(), settings.api_key.strip().encode()):
        logger.warning("[AUTH] request rejected: invalid API key")
        raise InvalidCredential("X-API-Key header does not match")
