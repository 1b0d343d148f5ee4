"""Pydantic models for stored entities and API requests/responses.

Python code uses snake_case field names; the JSON wire format uses camelCase
aliases (``resumeId``, ``targetRole``...), which FastAPI emits by default.
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

RoadmapCategory = Literal["skill", "project", "practice", "interview"]
RoadmapStatus = Literal["pending", "in_progress", "completed"]
ResumeStatus = Literal["pending_analysis", "analyzed", "failed"]
MessageRole = Literal["user", "ai"]

ROADMAP_CATEGORIES: tuple[str, ...] = ("skill", "project", "practice", "interview")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys, populated by either name."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Stored Entities
# =============================================================================


class User(CamelModel):
    id: int
    username: str
    password: str = Field(..., exclude=True)


class Resume(CamelModel):
    """A single resume submission. Never mutated apart from ``status``."""

    id: int
    user_id: int | None = None
    content: str = ""
    target_role: str
    file_name: str
    status: ResumeStatus = "pending_analysis"
    created_at: datetime = Field(default_factory=utcnow)


class AnalysisResult(CamelModel):
    id: int
    resume_id: int
    readiness_score: int
    ats_score: int
    resume_quality: int = 0
    skill_match: int = 0
    project_strength: int = 0
    interview_readiness: int = 0
    feedback: str = ""
    rewritten_content: str
    analysis_data: dict[str, Any] = Field(default_factory=dict)
    strengths: list[str] = Field(default_factory=list)
    gaps: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class RoadmapItem(CamelModel):
    id: int
    analysis_id: int
    title: str
    description: str
    category: RoadmapCategory
    status: RoadmapStatus = "pending"
    order: int
    created_at: datetime = Field(default_factory=utcnow)


class Interview(CamelModel):
    id: int
    resume_id: int
    user_id: int
    score: int | None = None
    feedback: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class InterviewMessage(CamelModel):
    id: int
    interview_id: int
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=utcnow)


class Portfolio(CamelModel):
    id: int
    user_id: int
    domain: str
    bio: str | None = None
    projects: list[dict[str, Any]] = Field(default_factory=list)
    theme: str = "minimal"
    is_public: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class Application(CamelModel):
    id: int
    user_id: int
    role: str
    company: str
    status: str = "Applied"
    notes: str | None = None
    date: datetime = Field(default_factory=utcnow)


# =============================================================================
# Drafts (validated LLM output, not yet persisted)
# =============================================================================


class AnalysisDraft(CamelModel):
    """Scores and text mapped from model output, ready to be stored."""

    readiness_score: int
    ats_score: int
    resume_quality: int = 0
    skill_match: int = 0
    project_strength: int = 0
    interview_readiness: int = 0
    feedback: str
    rewritten_content: str
    analysis_data: dict[str, Any] = Field(default_factory=dict)
    strengths: list[str]
    gaps: list[str]


class RoadmapItemDraft(CamelModel):
    title: str
    description: str = ""
    category: RoadmapCategory = "skill"
    status: RoadmapStatus = "pending"
    order: int


# =============================================================================
# API Request Models
# =============================================================================


class ScanRequest(CamelModel):
    content: str = Field(..., min_length=1, description="Resume text to scan")


class RoadmapStatusUpdate(CamelModel):
    status: RoadmapStatus = Field(..., description="New roadmap item status")


class InterviewCreate(CamelModel):
    resume_id: int = Field(..., gt=0)
    user_id: int = Field(..., gt=0)


class MessageCreate(CamelModel):
    content: str = Field(..., min_length=1, max_length=4000, description="Candidate answer")


class PortfolioCreate(CamelModel):
    user_id: int = Field(..., gt=0)
    domain: str = Field(..., min_length=1, max_length=63)
    bio: str | None = None
    projects: list[dict[str, Any]] = Field(default_factory=list)
    theme: str = "minimal"
    is_public: bool = False


class ApplicationCreate(CamelModel):
    user_id: int = Field(..., gt=0)
    role: str = Field(..., min_length=1)
    company: str = Field(..., min_length=1)
    status: str = "Applied"
    notes: str | None = None


# =============================================================================
# API Response Models
# =============================================================================


class AnalyzeResponse(CamelModel):
    resume_id: int
    analysis_id: int


class ScanResponse(CamelModel):
    candidate_name: str | None = None
    suggested_role: str | None = None
    skills: list[str] = Field(default_factory=list)


class AnalysisDetail(AnalysisResult):
    """An analysis with its owning resume and roadmap ordered by priority."""

    resume: Resume
    roadmap: list[RoadmapItem] = Field(default_factory=list)


class InterviewDetail(Interview):
    messages: list[InterviewMessage] = Field(default_factory=list)


class HealthResponse(CamelModel):
    status: Literal["healthy", "degraded"]
    storage_backend: str
    llm_providers: int
    mock_llm: bool
    version: str
