"""
Talking-Head Generation Pipeline

  Script  — OpenAI / Groq chat completions, or templated mock
  Audio   — ElevenLabs / Google Cloud TTS uploaded to R2, or mock
  Video   — Sync.so lip-sync (direct or polled), or mock

Jobs are deduplicated by request fingerprint, finished results are cached
for 5 minutes, and transient provider failures are retried with backoff.
"""

from .orchestrator import PipelineOrchestrator
from .routes import pipeline_router
from .models import Job, JobKind, JobStatus, Source, Stage

__all__ = [
    "PipelineOrchestrator",
    "pipeline_router",
    "Job",
    "JobKind",
    "JobStatus",
    "Source",
    "Stage",
]
