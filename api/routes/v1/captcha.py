"""
api/routes/v1/captcha.py -- Captcha challenge issuance.

GET /api/v1/captcha returns a PNG image of a fresh challenge. The challenge
id travels in the X-Captcha-ID response header; the client echoes it back as
captcha_id together with its answer on register, login and forgot-password.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response

from auth.captcha import CAPTCHA_HEADER, random_captcha_text, render_captcha_png
from core.config import get_settings

router = APIRouter()


@router.get("/captcha", response_class=Response)
def get_captcha(request: Request) -> Response:
    """Issue a one-time captcha challenge valid for CAPTCHA_TTL_SECONDS."""
    settings = get_settings()
    text = random_captcha_text(settings.captcha_length)
    challenge_id = request.app.state.captcha_store.issue(text, ttl=settings.captcha_ttl_seconds)
    return Response(
        content=render_captcha_png(text),
        media_type="image/png",
        headers={
            CAPTCHA_HEADER: challenge_id,
            "Cache-Control": "no-store",
            # Browsers only expose non-safelisted headers to JS when told to.
            "Access-Control-Expose-Headers": CAPTCHA_HEADER,
        },
    )
