"""Shared fixtures: mock-only adapters, fake clocks and a ready orchestrator.

No network access; live adapters are exercised through httpx.MockTransport.
"""

import pytest

from talkar import metrics
from talkar.pipeline.orchestrator import PipelineOrchestrator
from talkar.provider_factory import StageAdapters

from helpers import FakeClock, make_adapters, make_orchestrator


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def adapters() -> StageAdapters:
    return make_adapters()


@pytest.fixture
def orchestrator(adapters: StageAdapters) -> PipelineOrchestrator:
    return make_orchestrator(adapters)
