import time
from typing import Any, Dict

import jwt
from passlib.context import CryptContext

from .config import settings

pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_ctx.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_ctx.verify(password, password_hash)


def generate_jwt(payload: Dict[str, Any], expires_in_seconds: int | None = None) -> str:
    to_encode = payload.copy()
    ttl = settings.TOKEN_EXPIRES_SECONDS if expires_in_seconds is None else expires_in_seconds
    to_encode["exp"] = int(time.time()) + ttl
    token = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return token


def verify_jwt(token: str) -> Dict[str, Any]:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
