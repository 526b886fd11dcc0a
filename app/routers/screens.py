"""
Server-rendered screens: login, upload and review.
"""
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import DecodeError
from app.database import get_db
from app.dependencies import get_optional_user, get_presentation_loader, get_review_sessions
from app.models.user import User
from app.routers.auth import authenticate, set_auth_cookie
from app.schemas.resume import ReviewStatus
from app.services import auth as auth_service
from app.services.presentation import PresentationLoader, ReviewSessionStore

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))

router = APIRouter(include_in_schema=False)


def safe_next(target: Optional[str], default: str = "/upload") -> str:
    """Only local absolute paths are honored as redirect targets."""
    if target and target.startswith("/") and not target.startswith("//"):
        return target
    return default


def login_redirect(target: str) -> RedirectResponse:
    return RedirectResponse(f"/auth?next={quote(target, safe='/')}", status_code=status.HTTP_303_SEE_OTHER)


@router.get("/auth")
def auth_screen(request: Request, next: Optional[str] = None, user: Optional[User] = Depends(get_optional_user)):
    target = safe_next(next)
    if user is not None:
        return RedirectResponse(target, status_code=status.HTTP_303_SEE_OTHER)
    return templates.TemplateResponse(request, "auth.html", {"next": target, "error": None})


@router.post("/auth")
def auth_submit(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    next: str = Form("/upload"),
    db: Session = Depends(get_db),
):
    target = safe_next(next)
    user = authenticate(db, email, password)
    if user is None or not user.is_active:
        return templates.TemplateResponse(
            request,
            "auth.html",
            {"next": target, "error": "Incorrect email or password"},
            status_code=status.HTTP_401_UNAUTHORIZED,
        )

    response = RedirectResponse(target, status_code=status.HTTP_303_SEE_OTHER)
    set_auth_cookie(response, auth_service.create_access_token(data={"sub": user.email, "user_id": user.id}))
    return response


@router.get("/upload")
def upload_screen(request: Request, user: Optional[User] = Depends(get_optional_user)):
    if user is None:
        return login_redirect("/upload")
    return templates.TemplateResponse(
        request,
        "upload.html",
        {"api_prefix": settings.api_prefix, "max_upload_mb": settings.max_upload_bytes // (1024 * 1024)},
    )


@router.get("/resume/{record_id}")
async def review_screen(
    request: Request,
    record_id: str,
    user: Optional[User] = Depends(get_optional_user),
    loader: PresentationLoader = Depends(get_presentation_loader),
    sessions: ReviewSessionStore = Depends(get_review_sessions),
):
    if user is None:
        return login_redirect(f"/resume/{record_id}")

    session = sessions.open()
    try:
        review = await loader.load(record_id, session, owner_id=str(user.id))
    except DecodeError as e:
        sessions.close(session.id)
        logger.error(f"Error loading resume {record_id}: {e.message}")
        return templates.TemplateResponse(
            request,
            "review.html",
            {"review": None, "error": "Failed to load resume data. Please try again.", "session_id": None},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    except Exception:
        sessions.close(session.id)
        raise

    if review.status == ReviewStatus.NOT_FOUND:
        sessions.close(session.id)
        return templates.TemplateResponse(
            request,
            "review.html",
            {"review": None, "error": review.message, "session_id": None},
            status_code=status.HTTP_404_NOT_FOUND,
        )

    return templates.TemplateResponse(
        request,
        "review.html",
        {
            "review": review,
            "error": None,
            "session_id": session.id,
            "api_prefix": settings.api_prefix,
            "structured": not isinstance(review.feedback, str),
        },
    )
