"""Cookie-backed staff sessions.

Tokens are opaque and stored in ``web_sessions``; every authenticated request
slides the expiry forward. Sessions belonging to deactivated users stop
resolving immediately.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from backoffice.auth import Principal, Role
from backoffice.config import settings
from backoffice.db import SessionLocal
from backoffice.models import User, WebSession

logger = logging.getLogger(__name__)

PUBLIC_PATHS = frozenset({'/auth/login', '/health', '/docs', '/openapi.json'})


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _next_expiry(now: datetime | None = None) -> datetime:
    return (now or _utcnow()) + timedelta(minutes=settings.session_ttl_minutes)


def create_web_session(db: Session, user_id: int, ip: str | None, user_agent: str | None) -> str:
    token = secrets.token_urlsafe(48)
    db.add(WebSession(session_token=token, user_id=user_id, ip=ip, user_agent=user_agent, expires_at=_next_expiry()))
    db.flush()
    return token


def revoke_web_session(db: Session, token: str) -> bool:
    result = db.execute(
        update(WebSession)
        .where(WebSession.session_token == token, WebSession.revoked_at.is_(None))
        .values(revoked_at=_utcnow())
    )
    return bool(result.rowcount)


def purge_expired_sessions(db: Session, *, now: datetime | None = None) -> int:
    now = now or _utcnow()
    result = db.execute(
        delete(WebSession).where(or_(WebSession.expires_at <= now, WebSession.revoked_at.is_not(None)))
    )
    removed = result.rowcount or 0
    if removed:
        logger.info('Purged %s expired or revoked sessions', removed)
    return removed


def load_principal_from_token(db: Session, token: str | None) -> Principal | None:
    if not token:
        return None

    found = db.execute(
        select(WebSession, User).join(User, User.id == WebSession.user_id).where(WebSession.session_token == token)
    ).one_or_none()
    if found is None:
        return None

    web_session, user = found
    now = _utcnow()
    if web_session.revoked_at is not None or _aware(web_session.expires_at) <= now:
        return None
    if not user.active:
        web_session.revoked_at = now
        return None

    web_session.last_seen_at = now
    web_session.expires_at = _next_expiry(now)
    return Principal(
        id=user.id,
        username=user.username,
        role=Role(getattr(user.role, 'value', user.role)),
        branch_id=user.branch_id,
        active=user.active,
    )


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        # CORS preflights carry no cookies.
        if request.method == 'OPTIONS':
            return await call_next(request)

        with SessionLocal() as db:
            request.state.principal = load_principal_from_token(db, request.cookies.get(settings.session_cookie_name))
            db.commit()

        if request.state.principal is None and request.url.path not in PUBLIC_PATHS:
            return JSONResponse(status_code=401, content={'detail': 'Not authenticated', 'code': 'UNAUTHENTICATED'})
        return await call_next(request)
