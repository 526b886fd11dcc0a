"""
Resume ingestion pipeline.

Validate -> upload PDF -> render preview -> upload preview -> checkpoint
record -> AI analysis -> final record -> done. Stages run strictly in
sequence; the first failing stage ends the run in FAILED and nothing that
already happened is undone.
"""
import asyncio
import json
import logging
import re
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from app.core import prompts
from app.core.config import settings
from app.core.logging import record_id_var
from app.core.exceptions import (
    AppException, AnalysisError, ConflictError, ConversionError, DecodeError,
    PersistError, UploadError, ValidationError,
)
from app.schemas.ai import ChatResponse
from app.schemas.resume import IngestionStage, IngestionState, ResumeRecord, StructuredFeedback
from app.services import record_codec
from app.services.ai_feedback import FeedbackClient
from app.services.kv_store import KeyValueStore
from app.services.pdf_render import PDF_CONTENT_TYPE, PdfRenderer
from app.services.storage import FileStorage, LocalFile, StoredFile

logger = logging.getLogger(__name__)

STAGE_MESSAGES = {
    IngestionStage.UPLOADING: "Uploading resume...",
    IngestionStage.CONVERTING: "Converting PDF to image... This may take a moment.",
    IngestionStage.UPLOADING_IMAGE: "Uploading converted image...",
    IngestionStage.PERSISTING: "Preparing analysis data...",
    IngestionStage.ANALYZING: "Analyzing resume with AI...",
    IngestionStage.FINALIZING: "Saving analysis results...",
    IngestionStage.DONE: "Analysis complete! Redirecting...",
}

UNKNOWN_ERROR_MESSAGE = "Error: Unknown error occurred"
INTERRUPTED_MESSAGE = "Error: Processing was interrupted. Please try uploading again."

_CODE_FENCE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL | re.IGNORECASE)


@dataclass
class ResumeSubmission:
    company_name: str
    job_title: str
    job_description: str
    files: List[LocalFile] = field(default_factory=list)


def validate_submission(submission: ResumeSubmission, max_bytes: Optional[int] = None) -> LocalFile:
    """Pre-flight checks. Returns the single PDF to process or raises ValidationError."""
    max_bytes = max_bytes or settings.max_upload_bytes

    if not submission.files:
        raise ValidationError("Please select a PDF file to upload")
    if len(submission.files) > 1:
        raise ValidationError("Please select a single PDF file")

    file = submission.files[0]
    if file.content_type != PDF_CONTENT_TYPE:
        raise ValidationError("Please upload a PDF file only")
    if file.size > max_bytes:
        raise ValidationError("File size should be less than 5MB for optimal processing")

    fields = (submission.company_name, submission.job_title, submission.job_description)
    if any(not (value or "").strip() for value in fields):
        raise ValidationError("Please fill in all required fields")

    return file


def extract_feedback_text(response: ChatResponse) -> str:
    """A bare string, or the text of the first content part."""
    content = response.message.content
    if isinstance(content, str):
        return content
    if not content or content[0].text is None:
        raise DecodeError("AI response carried no text")
    return content[0].text


def parse_feedback(text: str) -> Union[StructuredFeedback, str]:
    """Structured feedback when the text is a JSON object, otherwise the raw text."""
    candidate = text
    fenced = _CODE_FENCE.match(text)
    if fenced:
        candidate = fenced.group(1)

    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError:
        logger.info("Feedback not JSON, storing as text")
        return text

    if not isinstance(payload, dict):
        logger.info("Feedback JSON is not an object, storing as text")
        return text

    try:
        return StructuredFeedback.model_validate(payload)
    except PydanticValidationError as e:
        logger.info(f"Feedback JSON does not match the feedback shape ({e.error_count()} errors), storing as text")
        return text


StateListener = Callable[[IngestionState], None]


class IngestionOrchestrator:
    """
    Runs one submission through the ingestion stages. One instance per run;
    the record id is fixed when the instance is created.
    """

    def __init__(
        self,
        storage: FileStorage,
        kv: KeyValueStore,
        ai: FeedbackClient,
        renderer: PdfRenderer,
        listener: Optional[StateListener] = None,
        record_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ):
        self.storage = storage
        self.kv = kv
        self.ai = ai
        self.renderer = renderer
        self.listener = listener
        self.owner_id = owner_id
        self.state = IngestionState(record_id=record_id or uuid.uuid4().hex)

    @property
    def record_id(self) -> str:
        return self.state.record_id

    async def run(self, submission: ResumeSubmission) -> IngestionState:
        if self.state.stage != IngestionStage.IDLE:
            raise ConflictError("This ingestion run has already started")

        try:
            resume_file = validate_submission(submission)
        except ValidationError as e:
            logger.info(f"Submission rejected: {e.message}")
            self._publish(message=e.message)
            return self.state

        token = record_id_var.set(self.record_id)
        try:
            await self._execute(submission, resume_file)
        except AppException as e:
            self._fail(f"Error: {e.message}")
        except Exception:
            logger.exception(f"Ingestion {self.record_id} crashed at {self.state.stage.value}")
            self._fail(UNKNOWN_ERROR_MESSAGE)
        except asyncio.CancelledError:
            # A terminal state releases the owner in IngestionTracker
            self._fail(INTERRUPTED_MESSAGE)
            raise
        finally:
            record_id_var.reset(token)

        return self.state

    async def _execute(self, submission: ResumeSubmission, resume_file: LocalFile) -> None:
        self._advance(IngestionStage.UPLOADING)
        uploaded = await self._upload(resume_file, "Failed to upload file")
        logger.info(f"PDF uploaded successfully: {uploaded.path}")

        self._advance(IngestionStage.CONVERTING)
        conversion = await self.renderer.convert(resume_file)
        if not conversion.ok:
            raise ConversionError(conversion.error, conversion.message or "PDF conversion failed")

        self._advance(IngestionStage.UPLOADING_IMAGE)
        uploaded_image = await self._upload(conversion.file, "Failed to upload converted image")
        logger.info(f"Image uploaded successfully: {uploaded_image.path}")

        self._advance(IngestionStage.PERSISTING)
        record = ResumeRecord(
            id=self.record_id,
            resume_path=uploaded.path,
            image_path=uploaded_image.path,
            company_name=submission.company_name,
            job_title=submission.job_title,
            job_description=submission.job_description,
            feedback="",
            owner_id=self.owner_id,
        )
        await self._save(record, "Failed to save resume data")

        self._advance(IngestionStage.ANALYZING)
        feedback = await self._analyze(uploaded.path, submission)

        self._advance(IngestionStage.FINALIZING)
        await self._save(record.model_copy(update={"feedback": feedback}), "Failed to save analysis results")

        self._publish(
            stage=IngestionStage.DONE,
            message=STAGE_MESSAGES[IngestionStage.DONE],
            redirect_url=f"/resume/{self.record_id}",
            redirect_delay_ms=settings.redirect_delay_ms,
        )
        logger.info(f"Ingestion {self.record_id} complete")

    async def _upload(self, file: LocalFile, failure: str) -> StoredFile:
        try:
            stored = await self.storage.upload([file])
        except Exception as e:
            logger.error(f"Upload of {file.name} failed: {e}", exc_info=True)
            raise UploadError(failure) from e
        if not stored:
            raise UploadError(failure)
        return stored

    async def _save(self, record: ResumeRecord, failure: str) -> None:
        try:
            await self.kv.set(record_codec.record_key(record.id), record_codec.encode(record))
        except Exception as e:
            logger.error(f"Persisting record {record.id} failed: {e}", exc_info=True)
            raise PersistError(failure) from e

    async def _analyze(self, document_ref: str, submission: ResumeSubmission) -> Union[StructuredFeedback, str]:
        instructions = prompts.prepare_instructions(submission.job_title, submission.job_description)
        try:
            response = await self.ai.feedback(document_ref, instructions)
        except Exception as e:
            logger.error(f"AI analysis failed for {self.record_id}: {e}", exc_info=True)
            raise AnalysisError() from e
        if response is None:
            raise AnalysisError()

        try:
            text = extract_feedback_text(response)
        except DecodeError as e:
            logger.error(f"AI analysis for {self.record_id} returned no text")
            raise AnalysisError() from e

        logger.info("AI analysis complete")
        return parse_feedback(text)

    def _advance(self, stage: IngestionStage) -> None:
        self._publish(stage=stage, message=STAGE_MESSAGES[stage])

    def _fail(self, message: str) -> None:
        logger.error(f"Ingestion {self.record_id} failed at {self.state.stage.value}: {message}")
        self._publish(stage=IngestionStage.FAILED, message=message, failed_stage=self.state.stage)

    def _publish(self, **changes) -> None:
        self.state = self.state.model_copy(update=changes)
        if self.listener is not None:
            try:
                self.listener(self.state)
            except Exception:
                logger.exception("Ingestion state listener failed")


class IngestionTracker:
    """
    Latest ingestion state per record id, plus the rule that a user has at
    most one ingestion in flight.
    """

    def __init__(self, max_entries: int = 1000):
        self.max_entries = max_entries
        self._states: "OrderedDict[str, IngestionState]" = OrderedDict()
        self._owners: Dict[str, str] = {}
        self._active: Dict[str, str] = {}

    def begin(self, owner: str, state: IngestionState) -> None:
        active_id = self._active.get(owner)
        if active_id is not None and not self._states[active_id].is_terminal:
            raise ConflictError()
        self._active[owner] = state.record_id
        self._owners[state.record_id] = owner
        self._store(state)

    def update(self, state: IngestionState) -> None:
        self._store(state)
        owner = self._owners.get(state.record_id)
        if state.is_terminal and owner is not None and self._active.get(owner) == state.record_id:
            del self._active[owner]

    def get(self, record_id: str) -> Optional[IngestionState]:
        return self._states.get(record_id)

    def owner_of(self, record_id: str) -> Optional[str]:
        return self._owners.get(record_id)

    def _store(self, state: IngestionState) -> None:
        self._states[state.record_id] = state
        self._states.move_to_end(state.record_id)
        while len(self._states) > self.max_entries:
            evicted, evicted_state = self._states.popitem(last=False)
            if not evicted_state.is_terminal:
                # never forget a run that is still in flight
                self._states[evicted] = evicted_state
                break
            self._owners.pop(evicted, None)
