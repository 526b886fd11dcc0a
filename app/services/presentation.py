"""
Review screen loading: fetch a record, turn its stored blobs into transient
URLs, surface the feedback.

Blob URLs behave like browser object URLs: they stay live until revoked.
Every URL belongs to a ReviewSession and is revoked when that session
closes, whatever way the screen was left.
"""
import logging
import mimetypes
import secrets
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, List, Optional, Union

from app.core.config import settings
from app.core.exceptions import ResourceResolutionError
from app.schemas.resume import ResumeRecord, ReviewStatus, StructuredFeedback
from app.services import record_codec
from app.services.kv_store import KeyValueStore
from app.services.pdf_render import PDF_CONTENT_TYPE
from app.services.storage import FileStorage

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Resume not found. Please try uploading again."
PROCESSING_MESSAGE = "Analysis results not found. The analysis might still be processing."


@dataclass
class Blob:
    data: bytes
    media_type: str


class ObjectUrlRegistry:
    """In-memory blob URLs served under `prefix`."""

    def __init__(self, prefix: Optional[str] = None):
        self.prefix = prefix or f"{settings.api_prefix}/blobs"
        self._blobs: Dict[str, Blob] = {}

    def create(self, data: bytes, media_type: str) -> str:
        token = secrets.token_urlsafe(24)
        self._blobs[token] = Blob(data=data, media_type=media_type)
        return f"{self.prefix}/{token}"

    def resolve(self, token: str) -> Optional[Blob]:
        return self._blobs.get(token)

    def revoke(self, url: str) -> bool:
        token = url.rsplit("/", 1)[-1]
        return self._blobs.pop(token, None) is not None

    def __len__(self) -> int:
        return len(self._blobs)


class ReviewSession:
    def __init__(self, registry: ObjectUrlRegistry, created_at: Optional[float] = None):
        self.id = uuid.uuid4().hex
        self.registry = registry
        self.created_at = created_at if created_at is not None else time.monotonic()
        self.urls: List[str] = []
        self.closed = False

    def acquire(self, data: bytes, media_type: str) -> str:
        if self.closed:
            raise ResourceResolutionError("Review session is closed")
        url = self.registry.create(data, media_type)
        self.urls.append(url)
        return url

    def close(self) -> None:
        if self.closed:
            return
        for url in self.urls:
            self.registry.revoke(url)
        logger.info(f"Review session {self.id} released {len(self.urls)} blob URL(s)")
        self.urls = []
        self.closed = True


class ReviewSessionStore:
    """Review sessions opened over HTTP, closed by the client or by TTL."""

    def __init__(
        self,
        registry: ObjectUrlRegistry,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.ttl_seconds = ttl_seconds or settings.review_session_ttl_seconds
        self.clock = clock
        self._sessions: Dict[str, ReviewSession] = {}

    def open(self) -> ReviewSession:
        self.sweep()
        session = ReviewSession(self.registry, created_at=self.clock())
        self._sessions[session.id] = session
        return session

    def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        return True

    def sweep(self) -> int:
        deadline = self.clock() - self.ttl_seconds
        expired = [sid for sid, s in self._sessions.items() if s.created_at <= deadline]
        for sid in expired:
            self.close(sid)
        return len(expired)

    def close_all(self) -> None:
        for sid in list(self._sessions):
            self.close(sid)

    def __len__(self) -> int:
        return len(self._sessions)


@dataclass
class ResumeReview:
    id: str
    status: ReviewStatus
    message: Optional[str] = None
    record: Optional[ResumeRecord] = None
    image_url: Optional[str] = None
    resume_url: Optional[str] = None
    feedback: Optional[Union[StructuredFeedback, str]] = None


class PresentationLoader:
    def __init__(self, storage: FileStorage, kv: KeyValueStore, registry: ObjectUrlRegistry):
        self.storage = storage
        self.kv = kv
        self.registry = registry

    async def load(self, record_id: str, session: ReviewSession, owner_id: Optional[str] = None) -> ResumeReview:
        """
        NOT_FOUND for a missing record, PROCESSING while feedback is empty,
        READY otherwise. A malformed stored value raises DecodeError.
        Blob resolution failures only leave the matching URL unset.

        With owner_id, a record uploaded by someone else is NOT_FOUND too,
        and none of its blobs are resolved.
        """
        logger.info(f"Loading resume data for ID: {record_id}")
        raw = await self.kv.get(record_codec.record_key(record_id))
        if not raw:
            return ResumeReview(id=record_id, status=ReviewStatus.NOT_FOUND, message=NOT_FOUND_MESSAGE)

        record = record_codec.decode(raw)
        if owner_id is not None and not record.is_owned_by(owner_id):
            logger.warning(f"Resume {record_id} requested by user {owner_id}, who does not own it")
            return ResumeReview(id=record_id, status=ReviewStatus.NOT_FOUND, message=NOT_FOUND_MESSAGE)

        resume_url = await self._resolve(session, record.resume_path, PDF_CONTENT_TYPE)
        image_type = mimetypes.guess_type(record.image_path)[0] or "image/png"
        image_url = await self._resolve(session, record.image_path, image_type)

        review = ResumeReview(
            id=record_id,
            status=ReviewStatus.READY,
            record=record,
            image_url=image_url,
            resume_url=resume_url,
        )
        if record.has_feedback:
            review.feedback = record.feedback
        else:
            logger.info(f"No feedback data found for {record_id}")
            review.status = ReviewStatus.PROCESSING
            review.message = PROCESSING_MESSAGE
        return review

    @asynccontextmanager
    async def open(self, record_id: str, owner_id: Optional[str] = None) -> AsyncIterator[ResumeReview]:
        """Load inside a session whose blob URLs are revoked on exit."""
        session = ReviewSession(self.registry)
        try:
            yield await self.load(record_id, session, owner_id)
        finally:
            session.close()

    async def _resolve(self, session: ReviewSession, path: str, media_type: str) -> Optional[str]:
        if not path:
            return None
        try:
            data = await self.storage.read(path)
        except Exception as e:
            logger.error(f"Error loading file {path}: {e}")
            return None
        if not data:
            logger.warning(f"No data returned for {path}")
            return None
        return session.acquire(data, media_type)
