from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel

from bizzytrack.persistence.db import SessionProvider, default_provider
from bizzytrack.services.api_keys import ApiKeyService


def get_provider() -> SessionProvider:
    # Process-wide provider; tests override this dependency with a sqlite-backed one.
    return default_provider()


class Principal(BaseModel):
    # Capture the caller identity used for tenant scoping and audit attribution.
    business_id: str
    user_id: str | None = None
    role: str | None = None
    api_key_id: str | None = None
    auth_method: str = "headers"


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _parse_bearer_token(header_value: str | None) -> tuple[str, str] | None:
    # Bearer tokens carry "<key id>.<secret>" as issued by the API key service.
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    key_id, sep, secret = parts[1].partition(".")
    if not sep or not key_id or not secret:
        raise _auth_error("Malformed API key")
    return key_id, secret


async def get_principal(
    request: Request,
    provider: SessionProvider = Depends(get_provider),
) -> Principal:
    credentials = _parse_bearer_token(request.headers.get("Authorization"))
    if credentials is not None:
        key_id, secret = credentials
        client_ip = request.client.host if request.client else None
        api_key = await ApiKeyService(provider).validate(key_id, secret, client_ip=client_ip)
        if api_key is None:
            raise _auth_error("Invalid API key")
        principal = Principal(
            business_id=api_key.business_id,
            user_id=api_key.created_by,
            role=request.headers.get("X-User-Role"),
            api_key_id=api_key.id,
            auth_method="api_key",
        )
        # The request middleware records usage for key-authenticated calls once the response is known.
        request.state.api_key_usage = (principal, provider)
        return principal
    # Header context is set by the upstream authentication layer.
    business_id = request.headers.get("X-Business-Id")
    if not business_id:
        raise _auth_error("X-Business-Id header is required")
    return Principal(
        business_id=business_id,
        user_id=request.headers.get("X-User-Id"),
        role=request.headers.get("X-User-Role"),
    )
