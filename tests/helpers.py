"""Scriptable stage adapters, fake clock and orchestrator builders shared by the suites."""

import asyncio
from typing import Optional

from talkar.pipeline.base import StageAdapter
from talkar.pipeline.catalog import ProductCatalog
from talkar.pipeline.errors import PermanentProviderError, TransientProviderError
from talkar.pipeline.lipsync import MockVideoAdapter
from talkar.pipeline.models import Source, Stage, StageResult
from talkar.pipeline.orchestrator import PipelineOrchestrator
from talkar.pipeline.retry import RetryPolicy
from talkar.pipeline.script_gen import MockScriptAdapter
from talkar.pipeline.tts import MockAudioAdapter
from talkar.provider_factory import StageAdapters

POSTERS = [
    {
        "image_id": "poster_01",
        "product_name": "Sunrise Cold Brew",
        "category": "Beverages",
        "tone": "happy",
        "language": "en",
        "image_url": "https://img.test/poster_01.jpg",
        "brand": "Sunrise Roasters",
        "price": 4.5,
        "currency": "USD",
        "features": ["Slow-steeped", "No added sugar"],
        "description": "Smooth cold brew.",
    },
]


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingAdapter(StageAdapter):
    """Wraps another adapter and counts invocations."""

    def __init__(self, inner: StageAdapter, delay: float = 0.0, source: Optional[Source] = None):
        self.inner = inner
        self.stage = inner.stage
        self.source = source or inner.source
        self.name = f"counting-{inner.name}"
        self.delay = delay
        self.calls = 0

    async def run(self, stage_input) -> StageResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        result = await self.inner.run(stage_input)
        return result.model_copy(update={"source": self.source})


class FailingAdapter(StageAdapter):
    """Live-looking adapter that always fails (or always hangs)."""

    source = Source.LIVE

    def __init__(self, stage: Stage, permanent: bool = False, hang: float = 0.0):
        self.stage = stage
        self.name = f"failing-{stage.value}"
        self.permanent = permanent
        self.hang = hang
        self.calls = 0

    async def run(self, stage_input) -> StageResult:
        self.calls += 1
        if self.hang:
            await asyncio.sleep(self.hang)
        if self.permanent:
            raise PermanentProviderError("bad request (400)", self.name, 400)
        raise TransientProviderError("upstream unavailable (503)", self.name, 503)


def make_adapters(**primaries: StageAdapter) -> StageAdapters:
    mocks = {
        Stage.SCRIPT: MockScriptAdapter(),
        Stage.AUDIO: MockAudioAdapter("https://mock.test"),
        Stage.VIDEO: MockVideoAdapter("https://mock.test"),
    }
    chosen = {
        Stage.SCRIPT: primaries.get("script") or CountingAdapter(mocks[Stage.SCRIPT]),
        Stage.AUDIO: primaries.get("audio") or CountingAdapter(mocks[Stage.AUDIO]),
        Stage.VIDEO: primaries.get("video") or CountingAdapter(mocks[Stage.VIDEO]),
    }
    return StageAdapters(primaries=chosen, mocks=mocks)


def make_orchestrator(adapters: StageAdapters, **kwargs) -> PipelineOrchestrator:
    kwargs.setdefault("retry_policy", RetryPolicy(max_attempts=3, base_delay=0))
    kwargs.setdefault("catalog", ProductCatalog(records=POSTERS))
    kwargs.setdefault("avatar_base_url", "https://img.test")
    return PipelineOrchestrator(adapters, **kwargs)
