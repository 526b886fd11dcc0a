"""
Auth dependencies.
Bearer tokens for API clients, the access_token cookie for the screens.
"""
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.core.config import settings
from app.database import get_db
from app.models.user import User
from app.schemas.auth import TokenData
from app.services import auth as auth_service

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def _token_from_request(request: Request, bearer: Optional[str]) -> Optional[str]:
    return bearer or request.cookies.get(settings.auth_cookie_name)


def _resolve_user(token: Optional[str], db: Session) -> tuple[Optional[User], Optional[str]]:
    """(user, failure reason). Exactly one of the two is set."""
    if not token:
        return None, "Not authenticated"

    payload = auth_service.decode_access_token(token)
    if payload is None:
        return None, "Could not validate credentials"
    if payload.get("error") == "TOKEN_EXPIRED":
        return None, "TOKEN_EXPIRED"
    if payload.get("type") != "access":
        return None, "Invalid token type"

    token_data = TokenData(email=payload.get("sub"))
    if token_data.email is None:
        return None, "Missing subject in token"

    user = db.query(User).filter(User.email == token_data.email).first()
    if user is None:
        return None, "User not found"
    if not user.is_active:
        return None, "User is inactive"
    return user, None


def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Extracts and validates the current user from the JWT token.
    """
    user, reason = _resolve_user(_token_from_request(request, token), db)
    if user is None:
        logger.warning(f"Authentication failed: {reason}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=reason,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_optional_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Same as get_current_user, but None instead of 401. Used by the screens."""
    user, _ = _resolve_user(_token_from_request(request, token), db)
    return user
