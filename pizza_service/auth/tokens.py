"""Session tokens.

A session token is an HS256 JWT carrying the user's id, name, email and roles.
Only its signature segment is stored (`auth_tokens.token`); a session is valid for as
long as that row exists. There is no expiry claim: logout deletes the row.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

import jwt

_JWT_ALG = "HS256"


def issue_token(*, secret: str, user: Dict[str, Any]) -> str:
    if not secret:
        raise ValueError("jwt_secret_blank")

    payload: Dict[str, Any] = {
        "id": int(user["id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "roles": list(user.get("roles") or []),
        "iat": int(datetime.now(timezone.utc).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=_JWT_ALG)


def decode_token(*, token: str, secret: str) -> Dict[str, Any]:
    if not token:
        raise ValueError("token_blank")
    if not secret:
        raise ValueError("jwt_secret_blank")
    return jwt.decode(token, secret, algorithms=[_JWT_ALG])


def token_signature(token: str) -> str:
    """Third dot-delimited segment of `token`, or "" when there are fewer than three.

    Malformed tokens are not rejected here; their empty key simply never matches a
    stored session.
    """
    parts = (token or "").split(".")
    if len(parts) > 2:
        return parts[2]
    return ""


def persist_token(conn: Any, *, user_id: int, token: str) -> None:
    """Store the session key. An existing mapping is never overwritten."""
    conn.execute(
        """
        INSERT INTO auth_tokens (token, user_id) VALUES (?, ?)
        ON CONFLICT(token) DO NOTHING
        """,
        (token_signature(token), int(user_id)),
    )


def is_token_valid(conn: Any, token: str) -> bool:
    signature = token_signature(token)
    if not signature:
        return False
    row = conn.execute(
        "SELECT user_id FROM auth_tokens WHERE token=?",
        (signature,),
    ).fetchone()
    return row is not None


def revoke_token(conn: Any, token: str) -> None:
    conn.execute(
        "DELETE FROM auth_tokens WHERE token=?",
        (token_signature(token),),
    )
