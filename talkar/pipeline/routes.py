"""
FastAPI routes for the talking-head pipeline.

  POST /ai-pipeline/generate             — submit a full run (async, poll status)
  GET  /ai-pipeline/status/{job_id}      — job snapshot
  POST /ai-pipeline/generate_full        — full run, blocking
  POST /ai-pipeline/generate_script      — script only
  POST /ai-pipeline/generate_product_script — product name → script only
  POST /ai-pipeline/generate_audio       — audio only
  POST /ai-pipeline/generate_lipsync     — video only
  POST /ai-pipeline/generate_ad_content  — product name → script, audio, video
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from talkar.config import PipelineConfig

from .errors import JobFailedError, JobNotFoundError, ValidationError
from .models import (
    AdContentRequest,
    AudioGenerateRequest,
    Job,
    JobSubmittedResponse,
    LipSyncGenerateRequest,
    PipelineGenerateRequest,
    ProductScriptRequest,
)
from .orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)

pipeline_router = APIRouter(prefix="/ai-pipeline", tags=["ai-pipeline"])

# ── Singleton orchestrator (built on first request) ──────────────────────────

_orchestrator: Optional[PipelineOrchestrator] = None


def get_orchestrator() -> PipelineOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = PipelineOrchestrator.from_config(PipelineConfig.from_env())
    return _orchestrator


def _http_error(e: Exception, action: str) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail={"error": "validation", "violations": e.violations})
    if isinstance(e, JobNotFoundError):
        return HTTPException(status_code=404, detail="Job not found")
    if isinstance(e, JobFailedError):
        logger.warning(f"{action} failed: {e}")
        error = e.job.error
        return HTTPException(
            status_code=502,
            detail={
                "error": error.kind if error else e.kind,
                "stage": error.stage.value if error and error.stage else None,
                "message": error.message if error else str(e),
                "job_id": e.job.id,
            },
        )
    logger.error(f"{action} failed: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=str(e))


# ── Async ────────────────────────────────────────────────────────────────────

@pipeline_router.post("/generate", response_model=JobSubmittedResponse, status_code=202)
async def submit_generation(
    request: PipelineGenerateRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Start the full pipeline for a poster and return the job id."""
    try:
        job = await orchestrator.generate(request.model_dump(exclude_none=True))
    except Exception as e:
        raise _http_error(e, "Pipeline submit")
    return JobSubmittedResponse(job_id=job.id, status=job.status, cached=job.cached)


@pipeline_router.get("/status/{job_id}", response_model=Job)
async def get_job_status(
    job_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        return await orchestrator.get_status(job_id)
    except Exception as e:
        raise _http_error(e, "Status lookup")


# ── Blocking ─────────────────────────────────────────────────────────────────

@pipeline_router.post("/generate_full")
async def generate_full(
    request: PipelineGenerateRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        result = await orchestrator.generate_full(request.model_dump(exclude_none=True))
    except Exception as e:
        raise _http_error(e, "Full pipeline")
    return {"success": True, **result.model_dump(mode="json")}


@pipeline_router.post("/generate_script")
async def generate_script(
    request: PipelineGenerateRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        result = await orchestrator.generate_script(request.model_dump(exclude_none=True))
    except Exception as e:
        raise _http_error(e, "Script generation")
    return {"success": True, **result.model_dump(mode="json")}


@pipeline_router.post("/generate_product_script")
async def generate_product_script(
    request: ProductScriptRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    # Script-only run keyed by product name alone; an empty name is a 400
    try:
        result = await orchestrator.generate_script(request.model_dump(exclude_none=True))
    except Exception as e:
        raise _http_error(e, "Product script generation")
    return {"success": True, "script": result.text, **result.model_dump(mode="json", exclude={"text"})}


@pipeline_router.post("/generate_audio")
async def generate_audio(
    request: AudioGenerateRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        result = await orchestrator.generate_audio(request.text, request.language, request.emotion)
    except Exception as e:
        raise _http_error(e, "Audio generation")
    return {"success": True, **result.model_dump(mode="json")}


@pipeline_router.post("/generate_lipsync")
async def generate_lipsync(
    request: LipSyncGenerateRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        result = await orchestrator.generate_video(
            request.audio_url,
            avatar_url=request.avatar,
            emotion=request.emotion,
            subject_id=request.image_id,
        )
    except Exception as e:
        raise _http_error(e, "Lip-sync generation")
    return {"success": True, **result.model_dump(mode="json")}


@pipeline_router.post("/generate_ad_content")
async def generate_ad_content(
    request: AdContentRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        result = await orchestrator.generate_ad_content(
            request.product_name,
            language=request.language,
            emotion=request.emotion,
            user_preferences=request.user_preferences,
        )
    except Exception as e:
        raise _http_error(e, "Ad content generation")
    return {"success": True, **result.model_dump(mode="json")}
