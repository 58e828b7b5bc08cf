"""
PipelineOrchestrator — script → audio → video with job tracking.

Flow for every entry point:
  1. Normalize + fingerprint the request
  2. Result cache hit      → completed pseudo-job, no provider calls
  3. Live job, same print  → attach to it (coalescing)
  4. Otherwise             → new job, stages run in a background task, each
                             under the retry policy and a per-stage timeout
  5. On success            → artifact cached, then job marked completed

A live stage that gives up falls back to its mock adapter unless strict mode
is on, in which case the job fails with the classified error.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from talkar import metrics

from .cache import InMemoryResultCache, ResultCache
from .catalog import ProductCatalog
from .errors import (
    CoalescedFailure,
    JobFailedError,
    PipelineError,
    ProviderError,
    RetryExhaustedError,
)
from .models import (
    STAGE_PLANS,
    STAGE_STATUS,
    Artifact,
    AudioInput,
    AudioResult,
    ErrorInfo,
    GenerateRequest,
    Job,
    JobKind,
    JobStatus,
    PipelineResult,
    ScriptInput,
    ScriptResult,
    Source,
    Stage,
    StageResult,
    UserPreferences,
    VideoInput,
    VideoReadyEvent,
    VideoResult,
)
from .normalizer import normalize, subject_id_of
from .registry import InMemoryJobRegistry, JobRegistry
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

# ── Policy ───────────────────────────────────────────────────────────────────

STAGE_TIMEOUTS = {
    Stage.SCRIPT: 10.0,
    Stage.AUDIO: 30.0,
    Stage.VIDEO: 60.0,
}

DEFAULT_AVATAR_BASE_URL = "https://talkar-image-storage.com"

# Kinds whose script depends on the subject's catalog record
_METADATA_KINDS = (JobKind.FULL, JobKind.SCRIPT)

VideoReadyHook = Callable[[VideoReadyEvent], Union[Awaitable[None], None]]


class PipelineOrchestrator:
    """
    Usage:
        orchestrator = PipelineOrchestrator.from_config(PipelineConfig.from_env())

        # Fire and poll
        job_id = await orchestrator.submit({"image_id": "poster_01"})
        job = await orchestrator.get_status(job_id)

        # Blocking
        result = await orchestrator.generate_full({"image_id": "poster_01", "emotion": "happy"})
    """

    def __init__(
        self,
        adapters,
        registry: Optional[JobRegistry] = None,
        cache: Optional[ResultCache] = None,
        retry_policy: Optional[RetryPolicy] = None,
        *,
        strict: bool = False,
        timeouts: Optional[Mapping[Stage, float]] = None,
        on_video_ready: Optional[VideoReadyHook] = None,
        catalog: Optional[ProductCatalog] = None,
        avatar_base_url: str = DEFAULT_AVATAR_BASE_URL,
    ):
        self._adapters = adapters
        self._registry = registry if registry is not None else InMemoryJobRegistry()
        self._cache = cache if cache is not None else InMemoryResultCache()
        self._retry = retry_policy or RetryPolicy()
        self._strict = strict
        self._timeouts = {**STAGE_TIMEOUTS, **(timeouts or {})}
        self._on_video_ready = on_video_ready
        self._catalog = catalog if catalog is not None else ProductCatalog()
        self._avatar_base_url = avatar_base_url.rstrip("/")
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config) -> "PipelineOrchestrator":
        """Wire adapters, stores and the persistence hook from a PipelineConfig."""
        from talkar.provider_factory import build_stage_adapters

        from .cache import RedisResultCache
        from .persistence import SupabaseVideoRecorder

        cache: ResultCache = (
            RedisResultCache.from_url(config.redis_url) if config.redis_url else InMemoryResultCache()
        )
        hook = SupabaseVideoRecorder(config) if config.supabase_configured else None

        return cls(
            build_stage_adapters(config),
            cache=cache,
            retry_policy=RetryPolicy(
                max_attempts=config.retry_max_attempts,
                base_delay=config.retry_base_delay,
            ),
            strict=config.strict_providers,
            timeouts={
                Stage.SCRIPT: config.script_timeout,
                Stage.AUDIO: config.audio_timeout,
                Stage.VIDEO: config.video_timeout,
            },
            on_video_ready=hook,
            catalog=ProductCatalog(config.product_metadata_path),
            avatar_base_url=config.avatar_base_url,
        )

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def cache(self) -> ResultCache:
        return self._cache

    # ═════════════════════════════════════════════════════════════════════
    # Core
    # ═════════════════════════════════════════════════════════════════════

    async def generate(self, raw: Mapping[str, Any], kind: JobKind = JobKind.FULL) -> Job:
        """Start (or join) the job for `raw` and return its snapshot at once."""
        job, _, _ = await self._start(raw, kind)
        return job

    async def generate_and_await(
        self, raw: Mapping[str, Any], kind: JobKind = JobKind.FULL
    ) -> Job:
        """
        Start (or join) the job for `raw` and wait for its terminal snapshot.

        Raises:
            ValidationError:  bad input, no job created.
            JobFailedError:   this call created the job and it failed.
            CoalescedFailure: the call attached to another caller's job and it failed.
        """
        job, _ = await self._await(raw, kind)
        return job

    async def _await(self, raw: Mapping[str, Any], kind: JobKind) -> tuple[Job, GenerateRequest]:
        job, request, created = await self._start(raw, kind)
        if not job.status.is_terminal:
            job = await self._registry.wait(job.id)

        if job.status == JobStatus.FAILED:
            if created:
                raise JobFailedError(job)
            raise CoalescedFailure(job)
        return job, request

    async def _start(
        self, raw: Mapping[str, Any], kind: JobKind
    ) -> tuple[Job, GenerateRequest, bool]:
        metrics.inc_counter(f"requests.{kind.value}")

        metadata = None
        if kind in _METADATA_KINDS:
            metadata = await self._catalog.lookup(subject_id_of(raw))
        request, fingerprint = normalize(raw, kind, metadata)

        entry = await self._cache_get(fingerprint)
        if entry is not None:
            metrics.inc_counter("cache.hit")
            logger.info(f"[{entry.job_id}] Cache hit for {kind.value} request")
            job = await self._registry.register(self._job_from_cache(entry))
            return job.model_copy(update={"cached": True}), request, True
        metrics.inc_counter("cache.miss")

        job, created = await self._registry.create_if_absent(fingerprint, kind)
        if not created:
            metrics.inc_counter("jobs.coalesced")
            logger.info(f"[{job.id}] Attached to in-flight {kind.value} job ({job.status.value})")
            return job, request, False

        metrics.inc_counter("jobs.created")
        logger.info(f"[{job.id}] Created {kind.value} job")
        task = asyncio.create_task(self._run(job.id, fingerprint, request, kind))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job, request, True

    @staticmethod
    def _job_from_cache(entry) -> Job:
        artifact = entry.artifact
        return Job(
            id=entry.job_id,
            fingerprint=entry.fingerprint,
            kind=entry.kind,
            status=JobStatus.COMPLETED,
            script=artifact.script,
            audio_url=artifact.audio_url,
            audio_duration=artifact.audio_duration,
            video_url=artifact.video_url,
            video_duration=artifact.video_duration,
            sources=dict(artifact.sources),
            cached=True,
        )

    # ── Cache access ─────────────────────────────────────────────────────
    # A broken cache backend degrades to a miss, never to a failed job.

    async def _cache_get(self, fingerprint: str):
        try:
            return await self._cache.get(fingerprint)
        except Exception as e:
            metrics.inc_counter("cache.errors")
            logger.warning(f"Result cache read failed, treating as miss: {e}")
            return None

    async def _cache_put(self, fingerprint: str, job_id: str, kind: JobKind, artifact: Artifact) -> None:
        try:
            await self._cache.put(fingerprint, job_id, kind, artifact)
        except Exception as e:
            metrics.inc_counter("cache.errors")
            logger.warning(f"[{job_id}] Result cache write failed, result not cached: {e}")

    # ── Background run ───────────────────────────────────────────────────

    async def _run(
        self, job_id: str, fingerprint: str, request: GenerateRequest, kind: JobKind
    ) -> None:
        started = time.monotonic()
        stage: Optional[Stage] = None
        try:
            # A job that finished between the cache miss and creation has
            # already written its artifact
            entry = await self._cache_get(fingerprint)
            if entry is not None:
                logger.info(f"[{job_id}] Result cached meanwhile, completing from cache")
                await self._registry.update(
                    job_id, lambda j: self._apply_artifact(j, entry.artifact)
                )
                return

            job = await self._registry.get(job_id, observe=False)
            for stage in STAGE_PLANS[kind]:
                job = await self._registry.update(
                    job_id, lambda j, s=stage: setattr(j, "status", STAGE_STATUS[s])
                )
                logger.info(f"[{job_id}] {job.status.value}")

                stage_input = self._stage_input(stage, request, kind, job)
                try:
                    result = await self._run_stage(job_id, stage, stage_input)
                except (ProviderError, RetryExhaustedError) as e:
                    await self._fail(job_id, stage, e)
                    return

                job = await self._registry.update(
                    job_id, lambda j, r=result: self._apply_result(j, r)
                )
                if stage == Stage.VIDEO:
                    await self._notify_video_ready(job, stage_input, result)

            artifact = Artifact(
                script=job.script,
                audio_url=job.audio_url,
                audio_duration=job.audio_duration,
                video_url=job.video_url,
                video_duration=job.video_duration,
                sources=dict(job.sources),
            )
            await self._cache_put(fingerprint, job_id, kind, artifact)
            await self._registry.update(job_id, lambda j: setattr(j, "status", JobStatus.COMPLETED))

            elapsed_ms = (time.monotonic() - started) * 1000
            metrics.inc_counter("jobs.completed")
            metrics.record_latency(f"job.{kind.value}", elapsed_ms)
            logger.info(f"[{job_id}] Completed in {elapsed_ms:.0f}ms (sources={_sources(job)})")

        except Exception as e:
            logger.error(f"[{job_id}] Unexpected pipeline failure: {e}", exc_info=True)
            metrics.record_error(stage.value if stage else "-", "Fatal", str(e), job_id)
            await self._fail(job_id, stage, e, kind="Fatal")

    def _stage_input(self, stage: Stage, request: GenerateRequest, kind: JobKind, job: Job):
        if stage == Stage.SCRIPT:
            return ScriptInput(
                subject_id=request.subject_id,
                product_name=request.product_name,
                metadata=request.metadata,
                language=request.language,
                emotion=request.emotion,
                user_preferences=request.user_preferences,
            )
        if stage == Stage.AUDIO:
            return AudioInput(
                text=request.text or job.script or "",
                language=request.language,
                emotion=request.emotion,
            )
        return VideoInput(
            audio_url=request.audio_url or job.audio_url or "",
            avatar_url=self.resolve_avatar(request, kind),
            emotion=request.emotion,
            subject_id=request.subject_id,
            audio_duration=job.audio_duration,
        )

    def resolve_avatar(self, request: GenerateRequest, kind: JobKind) -> str:
        """Explicit avatar, else the poster image, else the storage convention."""
        if request.avatar_url:
            return request.avatar_url
        image_url = (request.metadata or {}).get("image_url")
        if image_url:
            return image_url
        if kind == JobKind.AD_CONTENT and request.product_name:
            return f"{self._avatar_base_url}/{request.product_name.replace(' ', '_')}_avatar.png"
        return f"{self._avatar_base_url}/{request.subject_id}.jpg"

    async def _run_stage(self, job_id: str, stage: Stage, stage_input) -> StageResult:
        primary = self._adapters.primary(stage)

        async def on_attempt(attempt: int) -> None:
            def count(j: Job) -> None:
                j.attempt_counts[stage] = j.attempt_counts.get(stage, 0) + 1

            await self._registry.update(job_id, count)
            if attempt > 1:
                metrics.inc_counter(f"retries.{stage.value}")

        started = time.monotonic()
        try:
            result = await self._retry.execute(
                lambda: primary.run(stage_input),
                timeout=self._timeouts[stage],
                label=f"{stage.value}:{primary.name}",
                on_attempt=on_attempt,
            )
        except (ProviderError, RetryExhaustedError) as e:
            metrics.record_error(stage.value, e.kind, str(e), job_id)
            if self._strict or primary.source == Source.MOCK:
                raise
            logger.warning(
                f"[{job_id}] {stage.value} provider {primary.name} gave up ({e.kind}), "
                f"falling back to mock"
            )
            metrics.inc_counter(f"fallbacks.{stage.value}")
            result = await self._adapters.mock(stage).run(stage_input)

        metrics.record_latency(f"stage.{stage.value}", (time.monotonic() - started) * 1000)
        metrics.inc_counter(f"stages.{stage.value}.{result.source.value}")
        return result

    @staticmethod
    def _apply_result(job: Job, result: StageResult) -> None:
        job.sources[result.stage] = result.source
        if result.stage == Stage.SCRIPT:
            job.script = result.text
        elif result.stage == Stage.AUDIO:
            job.audio_url = result.url
            job.audio_duration = result.duration
        else:
            job.video_url = result.url
            job.video_duration = result.duration

    @staticmethod
    def _apply_artifact(job: Job, artifact: Artifact) -> None:
        job.script = artifact.script
        job.audio_url = artifact.audio_url
        job.audio_duration = artifact.audio_duration
        job.video_url = artifact.video_url
        job.video_duration = artifact.video_duration
        job.sources = dict(artifact.sources)
        job.status = JobStatus.COMPLETED

    async def _fail(
        self,
        job_id: str,
        stage: Optional[Stage],
        exc: Exception,
        kind: Optional[str] = None,
    ) -> None:
        error_kind = kind or getattr(exc, "kind", "Fatal")

        def mark_failed(j: Job) -> None:
            j.status = JobStatus.FAILED
            j.error = ErrorInfo(
                kind=error_kind,
                stage=stage,
                message=str(exc),
                attempts=j.attempt_counts.get(stage, 0) if stage else 0,
            )

        try:
            await self._registry.update(job_id, mark_failed)
        except PipelineError as e:
            logger.error(f"[{job_id}] Could not record failure: {e}")
            return

        metrics.inc_counter("jobs.failed")
        stage_name = stage.value if stage else "-"
        logger.error(f"[{job_id}] Failed in {stage_name} stage: {error_kind}: {exc}")

    async def _notify_video_ready(self, job: Job, stage_input: VideoInput, result: StageResult) -> None:
        if self._on_video_ready is None:
            return
        event = VideoReadyEvent(
            subject_id=stage_input.subject_id,
            video_url=result.url or "",
            avatar_url=stage_input.avatar_url,
            audio_url=stage_input.audio_url,
            emotion=stage_input.emotion,
            script=job.script,
            source=result.source,
        )
        try:
            outcome = self._on_video_ready(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            metrics.inc_counter("hooks.video_ready.failed")
            logger.warning(f"[{job.id}] Video-ready hook failed (ignored): {e}")

    # ═════════════════════════════════════════════════════════════════════
    # Entry points
    # ═════════════════════════════════════════════════════════════════════

    async def submit(self, raw: Mapping[str, Any]) -> str:
        """Queue a full pipeline run and return the job id."""
        job = await self.generate(raw, JobKind.FULL)
        return job.id

    async def get_status(self, job_id: str) -> Job:
        """Snapshot of a job. Raises JobNotFoundError."""
        return await self._registry.get(job_id)

    async def generate_script(self, raw: Mapping[str, Any]) -> ScriptResult:
        job, request = await self._await(raw, JobKind.SCRIPT)
        return ScriptResult(
            text=job.script or "",
            language=request.language,
            emotion=request.emotion,
            source=job.sources.get(Stage.SCRIPT, Source.MOCK),
        )

    async def generate_audio(
        self,
        text: str,
        language: Optional[str] = None,
        emotion: Optional[str] = None,
    ) -> AudioResult:
        job, _ = await self._await(
            {"text": text, "language": language, "emotion": emotion}, JobKind.AUDIO
        )
        return AudioResult(
            audio_url=job.audio_url or "",
            duration=job.audio_duration or 0.0,
            source=job.sources.get(Stage.AUDIO, Source.MOCK),
        )

    async def generate_video(
        self,
        audio_url: str,
        avatar_url: Optional[str] = None,
        emotion: Optional[str] = None,
        subject_id: Optional[str] = None,
    ) -> VideoResult:
        job, _ = await self._await(
            {
                "audio_url": audio_url,
                "avatar_url": avatar_url,
                "emotion": emotion,
                "subject_id": subject_id,
            },
            JobKind.VIDEO,
        )
        return VideoResult(
            video_url=job.video_url or "",
            duration=job.video_duration or 0.0,
            source=job.sources.get(Stage.VIDEO, Source.MOCK),
        )

    async def generate_full(self, raw: Mapping[str, Any]) -> PipelineResult:
        job, _ = await self._await(raw, JobKind.FULL)
        return _pipeline_result(job)

    async def generate_ad_content(
        self,
        product_name: str,
        language: Optional[str] = None,
        emotion: Optional[str] = None,
        user_preferences: Optional[Union[UserPreferences, Mapping[str, Any]]] = None,
    ) -> PipelineResult:
        """Script → audio → video for a bare product name (no poster)."""
        job, _ = await self._await(
            {
                "product_name": product_name,
                "language": language,
                "emotion": emotion,
                "user_preferences": user_preferences,
            },
            JobKind.AD_CONTENT,
        )
        return _pipeline_result(job)

    # ── Housekeeping ─────────────────────────────────────────────────────

    async def sweep(self) -> tuple[int, int]:
        """Purge expired cache entries and prune finished jobs."""
        purged = await self._cache.purge_expired()
        pruned = await self._registry.prune()
        return purged, pruned

    async def drain(self) -> None:
        """Wait for every background job task (shutdown, tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def _pipeline_result(job: Job) -> PipelineResult:
    return PipelineResult(
        job_id=job.id,
        script=job.script or "",
        audio_url=job.audio_url or "",
        video_url=job.video_url or "",
        audio_duration=job.audio_duration,
        video_duration=job.video_duration,
        sources=dict(job.sources),
        cached=job.cached,
    )


def _sources(job: Job) -> str:
    return ",".join(f"{stage.value}={source.value}" for stage, source in job.sources.items())
