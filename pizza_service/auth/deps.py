from __future__ import annotations

from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pizza_service.errors import UnauthorizedError
from pizza_service.models import AuthUser
from pizza_service.repository import Repository

from .tokens import decode_token


_bearer = HTTPBearer(auto_error=False)


def _debug(msg: str) -> None:
    print(f"[auth] {msg}")


def get_repo(request: Request) -> Repository:
    repo = getattr(request.app.state, "repo", None)
    if repo is None:
        raise HTTPException(status_code=500, detail="server_not_ready")
    return repo


def _identity_from_claims(claims: Dict[str, Any], token: str) -> AuthUser:
    return AuthUser(
        id=int(claims["id"]),
        name=str(claims.get("name") or ""),
        email=str(claims.get("email") or ""),
        roles=[dict(r) for r in (claims.get("roles") or [])],
        token=token,
    )


def optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    repo: Repository = Depends(get_repo),
) -> Optional[AuthUser]:
    """Identity for the request, or None.

    A token counts only if its signature is still stored (not logged out) and it
    verifies against the server secret. Why a token was refused is not reported.
    """
    if credentials is None or not credentials.credentials:
        return None
    token = credentials.credentials

    if not repo.is_logged_in(token):
        return None

    try:
        claims = decode_token(token=token, secret=request.app.state.cfg.AUTH_JWT_SECRET)
        return _identity_from_claims(claims, token)
    except (jwt.InvalidTokenError, KeyError, TypeError, ValueError) as e:
        _debug(f"Rejected stored token: {type(e).__name__}")
        return None


def require_auth(user: Optional[AuthUser] = Depends(optional_user)) -> AuthUser:
    if user is None:
        raise UnauthorizedError("unauthorized")
    return user
