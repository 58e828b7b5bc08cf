"""
Video stage — lip-synced talking head via Sync.so.

Sync answers a generate call either with the finished video URL or with a
job id that has to be polled:
  POST {api_url}/generate   {audio_url, avatar, emotion}
  GET  {api_url}/jobs/{id}  → status: queued | processing | completed | failed
"""

import asyncio
import hashlib
import logging
from typing import Any, Optional

import httpx

from .base import MockAdapter, StageAdapter
from .errors import PermanentProviderError, TransientProviderError, classify_http_error
from .models import Source, Stage, StageResult, VideoInput

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

POLL_INTERVAL = 2  # seconds
MAX_POLL_ATTEMPTS = 30
SUBMIT_RESERVE = 10.0  # seconds of a stage timeout kept for the submit call
DEFAULT_VIDEO_DURATION = 15.0

# Compared lower-cased
DONE_STATUSES = ("completed", "success")
FAILED_STATUSES = ("failed", "error")
PENDING_STATUSES = ("queued", "pending", "processing")


def _video_url(record: dict[str, Any]) -> Optional[str]:
    return record.get("videoUrl") or record.get("outputUrl") or record.get("video_url")


def _duration(record: dict[str, Any], fallback: Optional[float]) -> float:
    value = record.get("duration")
    if isinstance(value, (int, float)) and value > 0:
        return float(value)
    return fallback or DEFAULT_VIDEO_DURATION


class SyncLipSyncAdapter(StageAdapter[VideoInput]):
    stage = Stage.VIDEO
    source = Source.LIVE
    name = "sync"

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.sync.so/v2",
        poll_interval: float = POLL_INTERVAL,
        max_poll_attempts: int = MAX_POLL_ATTEMPTS,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        if timeout is not None and poll_interval > 0:
            # Keep the whole poll loop inside the stage timeout
            budget = int(max(timeout - SUBMIT_RESERVE, 0) // poll_interval)
            self.max_poll_attempts = max(1, min(max_poll_attempts, budget))
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key, "Content-Type": "application/json"}

    async def _request(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
                response = await client.request(method, url, headers=self._headers(), **kwargs)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise classify_http_error(e, self.name) from e
        except ValueError as e:
            raise PermanentProviderError("Sync returned invalid JSON", self.name) from e

        if not isinstance(data, dict):
            raise PermanentProviderError(f"Unexpected Sync response: {str(data)[:200]}", self.name)
        return data

    async def run(self, stage_input: VideoInput) -> StageResult:
        payload = {
            "audio_url": stage_input.audio_url,
            "avatar": stage_input.avatar_url,
            "emotion": stage_input.emotion,
        }
        submit_data = await self._request("POST", f"{self.api_url}/generate", json=payload)

        video_url = _video_url(submit_data)
        if video_url:
            logger.info(f"Sync returned video synchronously: {video_url}")
            return StageResult(
                stage=self.stage,
                source=self.source,
                url=video_url,
                duration=_duration(submit_data, stage_input.audio_duration),
            )

        job_id = submit_data.get("jobId") or submit_data.get("id")
        if not job_id:
            raise PermanentProviderError(
                f"Sync submit returned neither video nor jobId: {submit_data}", self.name
            )

        logger.info(f"Sync lip-sync submitted: job_id={job_id}")
        return await self._poll(job_id, stage_input)

    async def _poll(self, job_id: str, stage_input: VideoInput) -> StageResult:
        # Poll errors stay in this loop; the render is submitted once per run
        last_error: Optional[TransientProviderError] = None
        for attempt in range(self.max_poll_attempts):
            await asyncio.sleep(self.poll_interval)

            try:
                record = await self._request("GET", f"{self.api_url}/jobs/{job_id}")
            except TransientProviderError as e:
                last_error = e
                logger.warning(f"Sync poll #{attempt + 1} failed for job_id={job_id}: {e}")
                continue

            status = str(record.get("status", "")).lower()
            logger.info(f"Sync poll #{attempt + 1}: job_id={job_id} status={status}")

            if status in DONE_STATUSES:
                video_url = _video_url(record)
                if not video_url:
                    raise PermanentProviderError(
                        f"Sync job {job_id} completed without a video URL", self.name
                    )
                return StageResult(
                    stage=self.stage,
                    source=self.source,
                    url=video_url,
                    duration=_duration(record, stage_input.audio_duration),
                    provider_job_id=job_id,
                )

            if status in FAILED_STATUSES:
                error_msg = record.get("error") or record.get("message") or "Unknown Sync error"
                raise PermanentProviderError(f"Sync job {job_id} failed: {error_msg}", self.name)

            if status not in PENDING_STATUSES:
                raise PermanentProviderError(
                    f"Unknown Sync job status for {job_id}: {status or '<empty>'}", self.name
                )

        detail = f" (last poll error: {last_error})" if last_error else ""
        raise TransientProviderError(
            f"Sync job {job_id} still running after {self.max_poll_attempts} polls{detail}", self.name
        )


# ── Mock ─────────────────────────────────────────────────────────────────────

class MockVideoAdapter(MockAdapter[VideoInput]):
    stage = Stage.VIDEO
    name = "mock-video"

    def __init__(self, base_url: str = "https://mock-media.talkar.local", delay: float = 0.0):
        super().__init__(delay)
        self.base_url = base_url.rstrip("/")

    async def run(self, stage_input: VideoInput) -> StageResult:
        await self._simulate_latency()
        digest = hashlib.sha1(
            f"{stage_input.audio_url}|{stage_input.avatar_url}|{stage_input.emotion}".encode("utf-8")
        ).hexdigest()[:12]
        return StageResult(
            stage=self.stage,
            source=self.source,
            url=f"{self.base_url}/videos/mock-{digest}-{stage_input.emotion}.mp4",
            duration=stage_input.audio_duration or DEFAULT_VIDEO_DURATION,
        )
