"""
Password hashing, session tokens and the request auth gate.

The gate runs once per request at the HTTP boundary and produces an
immutable Principal; handlers receive it as an argument and pass the
relevant bits (user id, admin flag) on to the services.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from werkzeug.security import check_password_hash, generate_password_hash

from errors import AuthenticationError, AuthorizationError
from settings import Settings

ALGORITHM = "HS256"

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    id: int
    email: str
    username: Optional[str] = None
    is_admin: bool = False
    role: Optional[str] = None

    def claims(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "is_admin": self.is_admin,
            "role": self.role,
        }


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    if not password_hash:
        return False
    return check_password_hash(password_hash, password)


def principal_from_user(user: Dict[str, Any]) -> Principal:
    return Principal(
        id=int(user["id"]),
        email=user["email"],
        username=user.get("username"),
        is_admin=bool(user.get("is_admin")),
        role=user.get("role"),
    )


def create_token(principal: Principal, settings: Settings, now: Optional[datetime] = None) -> str:
    issued = now or datetime.now(timezone.utc)
    payload = principal.claims()
    payload["iat"] = issued
    payload["exp"] = issued + timedelta(days=settings.token_ttl_days)
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def decode_token(token: str, settings: Settings) -> Principal:
    """Validate signature and expiry; any failure is an AuthenticationError."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[ALGORITHM],
            options={"require": ["exp", "id", "email"]},
        )
        return Principal(
            id=int(payload["id"]),
            email=str(payload["email"]),
            username=payload.get("username"),
            is_admin=bool(payload.get("is_admin")),
            role=payload.get("role"),
        )
    except (jwt.PyJWTError, TypeError, ValueError) as exc:
        raise AuthenticationError("Invalid token") from exc


# ---------------
# FastAPI dependencies
# ---------------

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> Principal:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Unauthorized")
    return decode_token(credentials.credentials, settings)


def require_admin(principal: Principal = Depends(current_user)) -> Principal:
    if not principal.is_admin:
        raise AuthorizationError("Admin role required")
    return principal
