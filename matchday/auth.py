"""
Account credentials: hashed passwords and JWT access tokens.
Passwords never stored in plain text. Tokens carry only the user id;
admin status is always looked up from the admin registry, never from a claim.
"""
from __future__ import annotations

from datetime import timedelta

from jose import JWTError, jwt
from passlib.context import CryptContext

from matchday.config import get_settings
from matchday.datetime_utils import utcnow

# pbkdf2_sha256 avoids passlib's bcrypt backend probing
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(plain, hashed)


def create_access_token(subject: str) -> str:
    settings = get_settings()
    expire = utcnow() + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode = {"sub": subject, "exp": expire}
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> str | None:
    try:
        payload = jwt.decode(token, get_settings().jwt_secret_key, algorithms=[ALGORITHM])
        return payload.get("sub")
    except JWTError:
        return None
