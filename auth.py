import time
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, Optional

from bson import ObjectId
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from config import JWT_ALG, JWT_SECRET, RATE_LIMIT_MAX_ATTEMPTS, RATE_LIMIT_WINDOW_SEC, TOKEN_EXPIRE_MIN
from database import db
from errors import AuthenticationError, AuthorizationError, StoreError

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
auth_scheme = HTTPBearer(auto_error=False)


class TooManyAttempts(StoreError):
    status_code = 429


# Login attempts per client IP, kept in process memory
rate_store: Dict[str, Deque[float]] = {}


def check_rate_limit(ip: str):
    attempts = rate_store.setdefault(ip, deque())
    now = time.monotonic()
    while attempts and now - attempts[0] > RATE_LIMIT_WINDOW_SEC:
        attempts.popleft()
    if len(attempts) >= RATE_LIMIT_MAX_ATTEMPTS:
        raise TooManyAttempts("Too many login attempts. Please try again later.")
    attempts.append(now)


def create_access_token(profile_id: str, role: str, expires_minutes: int = TOKEN_EXPIRE_MIN) -> str:
    issued = datetime.now(timezone.utc)
    claims = {"sub": profile_id, "role": role, "iat": issued, "exp": issued + timedelta(minutes=expires_minutes)}
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALG)


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    return bool(hashed) and pwd_context.verify(plain, hashed)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def _profile_from_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError:
        raise AuthenticationError("Invalid token")
    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        raise AuthenticationError("Invalid token")

    user = db["profile"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise AuthenticationError("User not found")
    return user


async def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)) -> dict:
    if credentials is None:
        raise AuthenticationError("Not authenticated")
    return _profile_from_token(credentials.credentials)


async def get_optional_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)) -> Optional[dict]:
    if credentials is None:
        return None
    return _profile_from_token(credentials.credentials)


async def require_admin(user: dict = Depends(get_current_user)):
    if user.get("role") != "admin":
        raise AuthorizationError("Admin only")
    return user
