"""
Stage adapter interface.

Every stage (script, audio, video) has a live adapter that calls a remote
provider and a mock adapter that answers instantly and deterministically.
Which one runs is decided once, when the adapters are built
(see talkar.provider_factory). Adapters keep no per-request state.

Failures are raised, not returned: TransientProviderError for anything worth
retrying, PermanentProviderError for everything else.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from .models import Source, Stage, StageResult

InputT = TypeVar("InputT")


class StageAdapter(ABC, Generic[InputT]):
    stage: Stage
    source: Source
    name: str = "adapter"

    @abstractmethod
    async def run(self, stage_input: InputT) -> StageResult:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.stage.value}/{self.source.value}>"


class MockAdapter(StageAdapter[InputT]):
    source = Source.MOCK

    def __init__(self, delay: float = 0.0):
        self.delay = delay

    async def _simulate_latency(self) -> None:
        if self.delay > 0:
            await asyncio.sleep(self.delay)
