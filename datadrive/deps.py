from __future__ import annotations

from functools import lru_cache
from typing import Callable

from fastapi import Depends, HTTPException, status
from jose import jwt, JWTError
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .models.user import User
from .security import oauth2_scheme
from .services.media import LocalObjectStore, ObjectStore


class TokenPayload(BaseModel):
    sub: str
    role: str | None = None
    exp: int


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
        token_data = TokenPayload(**payload)
    except (JWTError, ValueError):
        raise credentials_exception

    user = db.query(User).filter(User.id == token_data.sub).first()
    if user is None or not user.is_active:
        raise credentials_exception
    return user


def require_roles(*roles: str) -> Callable[[User], User]:
    def _wrapper(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return _wrapper


@lru_cache(maxsize=1)
def get_media_store() -> ObjectStore:
    return LocalObjectStore(settings.MEDIA_ROOT)
