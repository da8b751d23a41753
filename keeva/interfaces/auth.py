from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from keeva.core.config import settings
from keeva.core.errors import AuthenticationError
from keeva.domain.schemas import Actor

security = HTTPBearer(auto_error=False)


def create_token(user_id: str, expires_in: timedelta = timedelta(days=7)) -> str:
    exp = datetime.now(timezone.utc) + expires_in
    return jwt.encode({"userId": user_id, "exp": exp}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")


def actor_from_token(user_repo, token: Optional[str]) -> Actor:
    if not token:
        raise AuthenticationError("Authentication required")
    payload = decode_token(token)
    user_id = payload.get("userId")
    if not user_id:
        raise AuthenticationError("Invalid token payload")
    user = user_repo.get(user_id)
    if user is None:
        raise AuthenticationError("User not found")
    return Actor(user_id=user.id, role=user.role)


def get_actor(request: Request,
              credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Actor:
    token = credentials.credentials if credentials else None
    return actor_from_token(request.app.state.user_repo, token)
