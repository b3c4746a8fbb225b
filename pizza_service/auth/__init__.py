"""Authentication / authorization helpers.

- Password hashing (passlib)
- JWT session tokens whose signature segment is stored in `auth_tokens`
- FastAPI dependencies live in `pizza_service.auth.deps`

The API accepts `Authorization: Bearer <token>` only. A token is honoured while its
signature is present in the database, so logout is immediate.
"""

from .security import hash_password, verify_password
from .tokens import (
    decode_token,
    is_token_valid,
    issue_token,
    persist_token,
    revoke_token,
    token_signature,
)

__all__ = [
    "hash_password",
    "verify_password",
    "decode_token",
    "is_token_valid",
    "issue_token",
    "persist_token",
    "revoke_token",
    "token_signature",
]
