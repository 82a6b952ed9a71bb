from __future__ import annotations

from fastapi import Request

from backoffice.config import settings


def get_client_ip(request: Request) -> str | None:
    """Client address for audit rows; the left-most X-Forwarded-For hop when behind the proxy."""
    if settings.trust_forwarded_for:
        forwarded_for = request.headers.get('x-forwarded-for')
        if forwarded_for:
            first_hop = forwarded_for.split(',')[0].strip()
            if first_hop:
                return first_hop
    return request.client.host if request.client else None


def get_user_agent(request: Request) -> str | None:
    agent = request.headers.get('user-agent')
    return agent[:512] if agent else None
