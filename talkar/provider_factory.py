"""
Builds the adapter set for each stage.

Live adapters are used only outside development environments and only when
the provider's credentials are present. Mock adapters are always built:
they are the fallback target when a live provider gives up.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from talkar.config import PipelineConfig
from talkar.pipeline.base import StageAdapter
from talkar.pipeline.errors import ConfigurationError
from talkar.pipeline.lipsync import MockVideoAdapter, SyncLipSyncAdapter
from talkar.pipeline.models import Stage
from talkar.pipeline.script_gen import (
    GROQ_API_URL,
    GROQ_MODEL,
    OPENAI_API_URL,
    OPENAI_MODEL,
    ChatCompletionScriptAdapter,
    MockScriptAdapter,
)
from talkar.pipeline.storage import MediaStorage
from talkar.pipeline.tts import ElevenLabsAudioAdapter, GoogleTTSAudioAdapter, MockAudioAdapter

logger = logging.getLogger(__name__)


@dataclass
class StageAdapters:
    primaries: dict[Stage, StageAdapter]
    mocks: dict[Stage, StageAdapter]

    def primary(self, stage: Stage) -> StageAdapter:
        return self.primaries[stage]

    def mock(self, stage: Stage) -> StageAdapter:
        return self.mocks[stage]

    def describe(self) -> dict[str, str]:
        return {stage.value: adapter.name for stage, adapter in self.primaries.items()}


def _script_adapter(config: PipelineConfig, transport) -> Optional[StageAdapter]:
    if config.ai_provider == "groq" and config.groq_api_key:
        return ChatCompletionScriptAdapter(
            config.groq_api_key, GROQ_API_URL, GROQ_MODEL, name="groq", transport=transport
        )
    if config.openai_api_key:
        return ChatCompletionScriptAdapter(
            config.openai_api_key, OPENAI_API_URL, OPENAI_MODEL, name="openai", transport=transport
        )
    return None


def _audio_adapter(config: PipelineConfig, transport) -> Optional[StageAdapter]:
    if not config.storage_configured:
        return None
    if config.tts_provider == "google" and config.google_tts_api_key:
        return GoogleTTSAudioAdapter(config.google_tts_api_key, MediaStorage(config), transport)
    if config.elevenlabs_api_key:
        return ElevenLabsAudioAdapter(config.elevenlabs_api_key, MediaStorage(config), transport)
    return None


def _video_adapter(config: PipelineConfig, transport) -> Optional[StageAdapter]:
    if not config.sync_api_key:
        return None
    return SyncLipSyncAdapter(
        config.sync_api_key,
        config.sync_api_url,
        poll_interval=config.sync_poll_interval,
        timeout=config.video_timeout,
        transport=transport,
    )


def build_stage_adapters(
    config: PipelineConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> StageAdapters:
    mocks: dict[Stage, StageAdapter] = {
        Stage.SCRIPT: MockScriptAdapter(config.mock_delay_seconds),
        Stage.AUDIO: MockAudioAdapter(config.mock_media_base_url, config.mock_delay_seconds),
        Stage.VIDEO: MockVideoAdapter(config.mock_media_base_url, config.mock_delay_seconds),
    }

    if config.is_dev_mode:
        logger.info(f"Environment '{config.environment}': all stages use mock adapters")
        return StageAdapters(primaries=dict(mocks), mocks=mocks)

    builders = {
        Stage.SCRIPT: _script_adapter,
        Stage.AUDIO: _audio_adapter,
        Stage.VIDEO: _video_adapter,
    }

    primaries: dict[Stage, StageAdapter] = {}
    for stage, build in builders.items():
        adapter = build(config, transport)
        if adapter is None:
            if config.strict_providers:
                raise ConfigurationError(f"No live provider configured for the {stage.value} stage")
            logger.warning(f"No live provider for {stage.value} stage, using mock adapter")
            adapter = mocks[stage]
        primaries[stage] = adapter

    adapters = StageAdapters(primaries=primaries, mocks=mocks)
    logger.info(f"Stage adapters: {adapters.describe()}")
    return adapters
