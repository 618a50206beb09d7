import hashlib
import hmac
import os
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional

import jwt
from bson import ObjectId
from fastapi import Depends, Header
from pydantic import BaseModel
from pymongo.database import Database

from database import USERS, get_db, parse_object_id
from errors import AuthenticationError
from settings import get_settings

AuthHeader = Annotated[Optional[str], Header(alias="Authorization")]

_PBKDF2_ROUNDS = 100_000


class CurrentUser(BaseModel):
    id: str
    name: str
    email: str
    role: str = "teacher"

    @property
    def oid(self) -> ObjectId:
        return ObjectId(self.id)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def hash_password(pw: str) -> str:
    salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", pw.encode(), salt, _PBKDF2_ROUNDS)
    return f"{salt.hex()}${digest.hex()}"


def verify_password(pw: str, stored: Optional[str]) -> bool:
    if not stored or "$" not in stored:
        return False
    salt_hex, digest_hex = stored.split("$", 1)
    digest = hashlib.pbkdf2_hmac("sha256", pw.encode(), bytes.fromhex(salt_hex), _PBKDF2_ROUNDS)
    return hmac.compare_digest(digest.hex(), digest_hex)


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.JWT_EXPIRES_MINUTES)
    now = datetime.now(timezone.utc)
    payload = {"sub": str(user_id), "iat": now, "exp": now + expires_delta}
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> str:
    """Return the user id carried by token or raise AuthenticationError."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")
    sub = payload.get("sub")
    if not sub:
        raise AuthenticationError("Invalid token")
    return sub


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("Missing Authorization header")
    try:
        scheme, token = authorization.split(" ", 1)
    except ValueError:
        raise AuthenticationError("Invalid Authorization header format")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Invalid auth scheme")
    return token.strip()


def public_user(doc: dict) -> CurrentUser:
    return CurrentUser(id=str(doc["_id"]), name=doc.get("name", ""), email=doc["email"],
                       role=doc.get("role", "teacher"))


def get_current_user(authorization: AuthHeader = None, db: Database = Depends(get_db)) -> CurrentUser:
    user_id = parse_object_id(decode_access_token(bearer_token(authorization)))
    user = db[USERS].find_one({"_id": user_id}) if user_id else None
    if not user:
        raise AuthenticationError("User no longer exists")
    return public_user(user)
