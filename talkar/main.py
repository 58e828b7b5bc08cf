import asyncio
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI

from . import metrics
from .config import PipelineConfig
from .pipeline.orchestrator import PipelineOrchestrator
from .pipeline.routes import get_orchestrator, pipeline_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 60


async def _sweep_loop(orchestrator: PipelineOrchestrator):
    """Background task: purge expired cache entries and finished jobs."""
    while True:
        await asyncio.sleep(SWEEP_INTERVAL_SECONDS)
        try:
            purged, pruned = await orchestrator.sweep()
            if purged or pruned:
                logger.info(f"Sweep: {purged} cache entries, {pruned} jobs removed")
        except Exception as e:
            logger.error(f"Sweep failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("TalkAR worker starting up...")
    orchestrator = get_orchestrator()
    sweeper = asyncio.create_task(_sweep_loop(orchestrator))
    yield
    logger.info("TalkAR worker shutting down...")
    sweeper.cancel()
    await orchestrator.drain()


app = FastAPI(title="TalkAR generation worker", lifespan=lifespan)
app.include_router(pipeline_router)


@app.get("/health")
def health_check():
    """Verify the worker is running and report which providers are configured."""
    config = PipelineConfig.from_env()
    return {
        "status": "ok",
        "environment": config.environment,
        "dev_mode": config.is_dev_mode,
        "strict_providers": config.strict_providers,
        "script_provider_set": bool(config.openai_api_key or config.groq_api_key),
        "tts_provider_set": bool(config.elevenlabs_api_key or config.google_tts_api_key),
        "lipsync_provider_set": bool(config.sync_api_key),
        "storage_set": config.storage_configured,
        "supabase_set": config.supabase_configured,
    }


@app.get("/metrics")
def metrics_endpoint(orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    """Return a snapshot of all worker metrics."""
    registry = orchestrator.registry
    if hasattr(registry, "active_count"):
        metrics.set_gauge("active_jobs", registry.active_count())
        metrics.set_gauge("retained_jobs", len(registry))
    return metrics.get_snapshot()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("talkar.main:app", host="0.0.0.0", port=port, reload=True)
