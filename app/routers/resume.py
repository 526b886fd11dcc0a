import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Request, Response, UploadFile, status

from app.core.config import settings
from app.core.exceptions import DecodeError, NotFoundError, ResourceResolutionError
from app.core.limiter import limiter
from app.dependencies import (
    get_blob_registry, get_current_user, get_feedback_client, get_kv_store,
    get_presentation_loader, get_renderer, get_review_sessions, get_storage, get_tracker,
)
from app.models.user import User
from app.schemas.resume import IngestionState, ResumeReviewResponse, ReviewStatus, UploadAcceptedResponse
from app.services.ai_feedback import FeedbackClient
from app.services.ingestion import IngestionOrchestrator, IngestionTracker, ResumeSubmission, validate_submission
from app.services.kv_store import KeyValueStore
from app.services.pdf_render import PdfRenderer
from app.services.presentation import ObjectUrlRegistry, PresentationLoader, ReviewSessionStore
from app.services.storage import FileStorage, LocalFile

logger = logging.getLogger(__name__)

router = APIRouter(tags=["resumes"])


async def read_uploads(files: Optional[List[UploadFile]]) -> List[LocalFile]:
    return [
        LocalFile(
            name=f.filename or "resume.pdf",
            content_type=f.content_type or "",
            data=await f.read(),
        )
        for f in (files or [])
    ]


@router.post("/resumes", response_model=UploadAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.upload_rate_limit)
async def submit_resume(
    request: Request,
    background_tasks: BackgroundTasks,
    company_name: str = Form(""),
    job_title: str = Form(""),
    job_description: str = Form(""),
    file: Optional[List[UploadFile]] = File(None),
    current_user: User = Depends(get_current_user),
    storage: FileStorage = Depends(get_storage),
    kv: KeyValueStore = Depends(get_kv_store),
    ai: FeedbackClient = Depends(get_feedback_client),
    renderer: PdfRenderer = Depends(get_renderer),
    tracker: IngestionTracker = Depends(get_tracker),
):
    """
    Validate the submission and start ingestion in the background.
    Progress is polled from the status endpoint.
    """
    submission = ResumeSubmission(
        company_name=company_name,
        job_title=job_title,
        job_description=job_description,
        files=await read_uploads(file),
    )
    validate_submission(submission)

    orchestrator = IngestionOrchestrator(
        storage, kv, ai, renderer, listener=tracker.update, owner_id=str(current_user.id),
    )
    tracker.begin(str(current_user.id), orchestrator.state)
    background_tasks.add_task(orchestrator.run, submission)

    logger.info(f"Ingestion {orchestrator.record_id} accepted for user {current_user.id}")
    return UploadAcceptedResponse(
        id=orchestrator.record_id,
        stage=orchestrator.state.stage,
        message="Submission accepted",
        status_url=f"{settings.api_prefix}/resumes/{orchestrator.record_id}/status",
    )


@router.get("/resumes/{record_id}/status", response_model=IngestionState)
def get_ingestion_status(
    record_id: str,
    current_user: User = Depends(get_current_user),
    tracker: IngestionTracker = Depends(get_tracker),
):
    state = tracker.get(record_id)
    if state is None or tracker.owner_of(record_id) != str(current_user.id):
        raise NotFoundError("No upload found for this resume")
    return state


@router.get("/resumes/{record_id}/review", response_model=ResumeReviewResponse)
async def get_resume_review(
    record_id: str,
    current_user: User = Depends(get_current_user),
    loader: PresentationLoader = Depends(get_presentation_loader),
    sessions: ReviewSessionStore = Depends(get_review_sessions),
):
    """
    Opens a review session. Blob URLs in the response stay live until
    DELETE /reviews/{session_id} or the session expires.
    """
    session = sessions.open()
    try:
        review = await loader.load(record_id, session, owner_id=str(current_user.id))
    except DecodeError as e:
        sessions.close(session.id)
        logger.error(f"Error loading resume {record_id}: {e.message}")
        raise DecodeError("Failed to load resume data. Please try again.") from e
    except Exception:
        sessions.close(session.id)
        raise

    if review.status == ReviewStatus.NOT_FOUND:
        sessions.close(session.id)
        raise NotFoundError(review.message)

    session_id = session.id
    if not session.urls:
        sessions.close(session.id)
        session_id = None

    record = review.record
    return ResumeReviewResponse(
        id=record_id,
        status=review.status,
        message=review.message,
        session_id=session_id,
        company_name=record.company_name,
        job_title=record.job_title,
        image_url=review.image_url,
        resume_url=review.resume_url,
        feedback=review.feedback,
    )


@router.delete("/reviews/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def release_review_session(
    session_id: str,
    sessions: ReviewSessionStore = Depends(get_review_sessions),
):
    if not sessions.close(session_id):
        raise NotFoundError("Review session not found")


@router.get("/blobs/{token}")
def get_blob(token: str, registry: ObjectUrlRegistry = Depends(get_blob_registry)):
    blob = registry.resolve(token)
    if blob is None:
        raise ResourceResolutionError()
    return Response(content=blob.data, media_type=blob.media_type, headers={"Cache-Control": "no-store"})
