from __future__ import annotations

from passlib.context import CryptContext

from pizza_service.errors import ValidationError

# Fixed cost factor; changing it only affects newly hashed passwords.
HASH_ROUNDS = 29000

_pwd = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
    pbkdf2_sha256__rounds=HASH_ROUNDS,
)


def hash_password(password: str) -> str:
    if not password:
        raise ValidationError("password_blank")
    return _pwd.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return _pwd.verify(password, password_hash)
    except ValueError:
        # Stored value is not a hash this context understands.
        return False
