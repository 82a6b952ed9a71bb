from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from backoffice.auth import Principal, get_current_principal
from backoffice.config import settings
from backoffice.db import get_db
from backoffice.dependencies import get_client_ip, get_user_agent
from backoffice.models import User
from backoffice.schemas import LoginRequest
from backoffice.security.csrf import issue_csrf_cookie, verify_csrf
from backoffice.security.passwords import verify_and_upgrade
from backoffice.security.sessions import create_web_session, revoke_web_session
from backoffice.services.audit_service import log_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/auth', tags=['auth'])

INVALID_LOGIN = {'detail': 'Invalid username or password', 'code': 'INVALID_CREDENTIALS'}


def _principal_payload(principal: Principal) -> dict:
    return {
        'id': principal.id,
        'username': principal.username,
        'role': principal.role.value,
        'branch_id': principal.branch_id,
    }


@router.post('/login')
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    username = payload.username.strip()
    ip = get_client_ip(request)
    user_agent = get_user_agent(request)

    user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
    failure_reason = None
    if not user:
        failure_reason = 'UNKNOWN_USERNAME'
    elif not user.active:
        failure_reason = 'INACTIVE_USER'
    else:
        valid, upgraded_hash = verify_and_upgrade(payload.password, user.password_hash)
        if not valid:
            failure_reason = 'BAD_PASSWORD'
        elif upgraded_hash:
            user.password_hash = upgraded_hash

    if failure_reason:
        logger.info('Login failed for %s: %s', username, failure_reason)
        log_audit(
            db,
            actor_user_id=user.id if user else None,
            action='AUTH_LOGIN_FAILED',
            ip=ip,
            metadata={'username': username, 'reason': failure_reason},
        )
        db.commit()
        return JSONResponse(status_code=401, content=INVALID_LOGIN)

    token = create_web_session(db, user.id, ip=ip, user_agent=user_agent)
    log_audit(db, actor_user_id=user.id, action='AUTH_LOGIN', ip=ip, metadata={'username': username})
    db.commit()

    response = JSONResponse(
        {
            'id': user.id,
            'username': user.username,
            'full_name': user.full_name,
            'role': user.role.value,
            'branch_id': user.branch_id,
        }
    )
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    # Fresh CSRF token once the session is authenticated.
    issue_csrf_cookie(response)
    return response


@router.post('/logout')
def logout(request: Request, db: Session = Depends(get_db), _: None = Depends(verify_csrf)):
    principal = getattr(request.state, 'principal', None)
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        revoke_web_session(db, token)

    log_audit(
        db,
        actor_user_id=principal.id if principal else None,
        action='AUTH_LOGOUT',
        ip=get_client_ip(request),
    )
    db.commit()

    response = JSONResponse({'ok': True})
    response.delete_cookie(settings.session_cookie_name)
    return response


@router.get('/me')
def me(principal: Principal = Depends(get_current_principal)):
    return _principal_payload(principal)
