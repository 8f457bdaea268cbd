"""
Shared API dependencies
"""
from typing import Optional

from fastapi import Header, Request

from summarizer.core.container import ServiceContainer
from summarizer.utils.errors import AuthenticationError


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


async def get_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """Caller id set by the authentication proxy"""
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError("Missing X-User-Id header")
    return x_user_id.strip()
