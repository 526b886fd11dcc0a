from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Union

# --- FEEDBACK SCHEMAS ---

class FeedbackTip(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None  # "good" | "improve"
    tip: str = ""
    explanation: Optional[str] = None

class FeedbackSection(BaseModel):
    model_config = ConfigDict(extra="allow")

    score: Optional[Union[int, float]] = None
    tips: List[Union[FeedbackTip, str]] = Field(default_factory=list)

class StructuredFeedback(BaseModel):
    """
    Parsed analysis result. The shape is owned by the AI response contract,
    so every section is optional and unknown keys are preserved.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    overall_score: Optional[Union[int, float]] = Field(default=None, alias="overallScore")
    ats: Optional[FeedbackSection] = Field(default=None, alias="ATS")
    tone_and_style: Optional[FeedbackSection] = Field(default=None, alias="toneAndStyle")
    content: Optional[FeedbackSection] = None
    structure: Optional[FeedbackSection] = None
    skills: Optional[FeedbackSection] = None

    def detail_sections(self) -> List[tuple]:
        """(title, section) pairs for the categories that are present."""
        sections = [
            ("Tone & Style", self.tone_and_style),
            ("Content", self.content),
            ("Structure", self.structure),
            ("Skills", self.skills),
        ]
        return [(title, section) for title, section in sections if section is not None]

# --- RECORD SCHEMA ---

class ResumeRecord(BaseModel):
    """Persisted unit: job context, storage references and feedback."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    resume_path: str = Field(alias="resumePath")
    image_path: str = Field(alias="imagePath")
    company_name: str = Field(alias="companyName")
    job_title: str = Field(alias="jobTitle")
    job_description: str = Field(alias="jobDescription")
    # "" while analysis is pending, raw text when the AI answer was not structured
    feedback: Union[StructuredFeedback, str] = ""
    # id of the user who uploaded the resume
    owner_id: Optional[str] = Field(default=None, alias="ownerId")

    @property
    def has_feedback(self) -> bool:
        if isinstance(self.feedback, str):
            return bool(self.feedback.strip())
        return True

    def is_owned_by(self, user_id: str) -> bool:
        return self.owner_id is not None and self.owner_id == user_id

# --- INGESTION SCHEMAS ---

class IngestionStage(str, Enum):
    IDLE = "IDLE"
    UPLOADING = "UPLOADING"
    CONVERTING = "CONVERTING"
    UPLOADING_IMAGE = "UPLOADING_IMAGE"
    PERSISTING = "PERSISTING"
    ANALYZING = "ANALYZING"
    FINALIZING = "FINALIZING"
    DONE = "DONE"
    FAILED = "FAILED"

class IngestionState(BaseModel):
    record_id: str
    stage: IngestionStage = IngestionStage.IDLE
    message: str = ""
    failed_stage: Optional[IngestionStage] = None
    redirect_url: Optional[str] = None
    redirect_delay_ms: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in (IngestionStage.DONE, IngestionStage.FAILED)

class UploadAcceptedResponse(BaseModel):
    id: str
    stage: IngestionStage
    message: str
    status_url: str

# --- REVIEW SCHEMAS ---

class ReviewStatus(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    PROCESSING = "PROCESSING"
    READY = "READY"

class ResumeReviewResponse(BaseModel):
    id: str
    status: ReviewStatus
    message: Optional[str] = None
    session_id: Optional[str] = None
    company_name: Optional[str] = None
    job_title: Optional[str] = None
    image_url: Optional[str] = None
    resume_url: Optional[str] = None
    feedback: Optional[Union[StructuredFeedback, str]] = None
