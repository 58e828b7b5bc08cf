"""
Pydantic models and enums for the talking-head generation pipeline.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Stages & Status ──────────────────────────────────────────────────────────

class Stage(str, Enum):
    SCRIPT = "script"
    AUDIO = "audio"
    VIDEO = "video"


class JobStatus(str, Enum):
    PENDING = "pending"
    GENERATING_SCRIPT = "generating_script"
    GENERATING_AUDIO = "generating_audio"
    GENERATING_VIDEO = "generating_video"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Forward order of the state machine. FAILED sits outside it: any
# non-terminal status may move to FAILED.
STATUS_ORDER = {
    JobStatus.PENDING: 0,
    JobStatus.GENERATING_SCRIPT: 1,
    JobStatus.GENERATING_AUDIO: 2,
    JobStatus.GENERATING_VIDEO: 3,
    JobStatus.COMPLETED: 4,
}

STAGE_STATUS = {
    Stage.SCRIPT: JobStatus.GENERATING_SCRIPT,
    Stage.AUDIO: JobStatus.GENERATING_AUDIO,
    Stage.VIDEO: JobStatus.GENERATING_VIDEO,
}


def is_forward_transition(current: JobStatus, new: JobStatus) -> bool:
    """True if `current → new` is allowed by the job state machine."""
    if current == new:
        return True
    if current.is_terminal:
        return False
    if new == JobStatus.FAILED:
        return True
    return STATUS_ORDER[new] > STATUS_ORDER[current]


class JobKind(str, Enum):
    FULL = "full"
    AD_CONTENT = "ad_content"
    SCRIPT = "script"
    AUDIO = "audio"
    VIDEO = "video"


STAGE_PLANS: dict[JobKind, tuple[Stage, ...]] = {
    JobKind.FULL: (Stage.SCRIPT, Stage.AUDIO, Stage.VIDEO),
    JobKind.AD_CONTENT: (Stage.SCRIPT, Stage.AUDIO, Stage.VIDEO),
    JobKind.SCRIPT: (Stage.SCRIPT,),
    JobKind.AUDIO: (Stage.AUDIO,),
    JobKind.VIDEO: (Stage.VIDEO,),
}


class Source(str, Enum):
    LIVE = "live"
    MOCK = "mock"


# ── Requests ─────────────────────────────────────────────────────────────────

class UserPreferences(BaseModel):
    model_config = ConfigDict(frozen=True)

    language: Optional[str] = None
    preferred_tone: Optional[str] = None


class GenerateRequest(BaseModel):
    """Normalized pipeline input. Built only by the normalizer."""

    model_config = ConfigDict(frozen=True)

    subject_id: Optional[str] = None
    product_name: Optional[str] = None
    language: str = "en"
    emotion: str = "neutral"
    user_preferences: Optional[UserPreferences] = None
    text: Optional[str] = None
    audio_url: Optional[str] = None
    avatar_url: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


# ── Stage I/O ────────────────────────────────────────────────────────────────

class ScriptInput(BaseModel):
    subject_id: Optional[str] = None
    product_name: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    language: str = "en"
    emotion: str = "neutral"
    user_preferences: Optional[UserPreferences] = None


class AudioInput(BaseModel):
    text: str
    language: str = "en"
    emotion: str = "neutral"


class VideoInput(BaseModel):
    audio_url: str
    avatar_url: str
    emotion: str = "neutral"
    subject_id: Optional[str] = None
    audio_duration: Optional[float] = None


class StageResult(BaseModel):
    stage: Stage
    source: Source
    text: Optional[str] = None
    url: Optional[str] = None
    duration: float = 0.0
    provider_job_id: Optional[str] = None


# ── Jobs ─────────────────────────────────────────────────────────────────────

class ErrorInfo(BaseModel):
    kind: str
    stage: Optional[Stage] = None
    message: str
    attempts: int = 0


class Job(BaseModel):
    id: str
    fingerprint: str
    kind: JobKind = JobKind.FULL
    status: JobStatus = JobStatus.PENDING
    script: Optional[str] = None
    audio_url: Optional[str] = None
    audio_duration: Optional[float] = None
    video_url: Optional[str] = None
    video_duration: Optional[float] = None
    error: Optional[ErrorInfo] = None
    attempt_counts: dict[Stage, int] = Field(default_factory=dict)
    sources: dict[Stage, Source] = Field(default_factory=dict)
    cached: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Artifact(BaseModel):
    """The finished output of a job, as stored in the result cache."""

    script: Optional[str] = None
    audio_url: Optional[str] = None
    audio_duration: Optional[float] = None
    video_url: Optional[str] = None
    video_duration: Optional[float] = None
    sources: dict[Stage, Source] = Field(default_factory=dict)


class CacheEntry(BaseModel):
    fingerprint: str
    job_id: str
    kind: JobKind
    artifact: Artifact
    created_at: float
    expires_at: float


class VideoReadyEvent(BaseModel):
    """Passed to the video-ready hook after a successful video stage."""

    subject_id: Optional[str] = None
    video_url: str
    avatar_url: str
    audio_url: str
    emotion: str = "neutral"
    script: Optional[str] = None
    source: Source


# ── Results of the synchronous entry points ──────────────────────────────────

class ScriptResult(BaseModel):
    text: str
    language: str
    emotion: str
    source: Source


class AudioResult(BaseModel):
    audio_url: str
    duration: float
    source: Source


class VideoResult(BaseModel):
    video_url: str
    duration: float
    source: Source


class PipelineResult(BaseModel):
    job_id: str
    script: str
    audio_url: str
    video_url: str
    audio_duration: Optional[float] = None
    video_duration: Optional[float] = None
    sources: dict[Stage, Source] = Field(default_factory=dict)
    cached: bool = False


# ── API Request Models ───────────────────────────────────────────────────────

class PipelineGenerateRequest(BaseModel):
    image_id: Optional[str] = Field(None, description="Poster / image identifier")
    product_name: Optional[str] = None
    language: Optional[str] = None
    emotion: Optional[str] = None
    user_preferences: Optional[UserPreferences] = None
    avatar: Optional[str] = None


class AudioGenerateRequest(BaseModel):
    text: str = ""
    language: Optional[str] = None
    emotion: Optional[str] = None


class LipSyncGenerateRequest(BaseModel):
    audio_url: str = ""
    image_id: Optional[str] = None
    avatar: Optional[str] = None
    emotion: Optional[str] = None


class ProductScriptRequest(BaseModel):
    product_name: str = ""
    language: Optional[str] = None
    emotion: Optional[str] = None
    user_preferences: Optional[UserPreferences] = None


class AdContentRequest(BaseModel):
    product_name: str = ""
    language: Optional[str] = None
    emotion: Optional[str] = None
    user_preferences: Optional[UserPreferences] = None


class JobSubmittedResponse(BaseModel):
    job_id: str
    status: JobStatus
    cached: bool = False
