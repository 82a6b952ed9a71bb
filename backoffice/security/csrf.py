"""Double-submit CSRF protection for the JSON API.

The token lives in a cookie the front end can read; state-changing requests
must echo it back in the ``X-CSRF-Token`` header.
"""

from __future__ import annotations

import secrets

from fastapi import HTTPException, Request, status
from starlette.responses import Response

from backoffice.config import settings

CSRF_COOKIE_NAME = 'csrf_token'
CSRF_HEADER_NAME = 'x-csrf-token'
SAFE_METHODS = {'GET', 'HEAD', 'OPTIONS'}


def issue_csrf_cookie(response: Response, token: str | None = None) -> str:
    token = token or secrets.token_urlsafe(24)
    response.set_cookie(
        key=CSRF_COOKIE_NAME,
        value=token,
        httponly=False,
        secure=settings.session_cookie_secure,
        samesite='lax',
    )
    return token


def install_csrf_cookie_middleware(app) -> None:
    @app.middleware('http')
    async def csrf_cookie_middleware(request: Request, call_next):
        incoming = request.cookies.get(CSRF_COOKIE_NAME)
        request.state.csrf_token = incoming or secrets.token_urlsafe(24)

        response = await call_next(request)
        if incoming != request.state.csrf_token:
            issue_csrf_cookie(response, request.state.csrf_token)
        return response


async def verify_csrf(request: Request) -> None:
    if request.method in SAFE_METHODS:
        return

    header_token = request.headers.get(CSRF_HEADER_NAME)
    cookie_token = request.cookies.get(CSRF_COOKIE_NAME)
    if not header_token or not cookie_token or not secrets.compare_digest(header_token, cookie_token):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Invalid CSRF token')
