"""Shared fixtures: a fake host platform, a fake clock and an in-memory store.

All async tests run under pytest-asyncio (auto mode, see pyproject.toml).
"""
from __future__ import annotations

import dataclasses

import pytest

from explainguard.enforcement.appeals import AppealHandler
from explainguard.enforcement.config_schema import EnforcementConfig, resolve_config
from explainguard.enforcement.orchestrator import EscalationOrchestrator
from explainguard.enforcement.records import EnforcementRepository
from explainguard.services.state_store import MemoryStateStore
from explainguard.testing.fakes import FakeClock, FakePlatform, FakeScheduler, RecordingDispatcher


class ConfigHolder:
    """Callable config provider whose value tests can tweak."""

    def __init__(self, config: EnforcementConfig) -> None:
        self.config = config

    def __call__(self) -> EnforcementConfig:
        return self.config

    def update(self, **changes) -> EnforcementConfig:
        self.config = dataclasses.replace(self.config, **changes)
        return self.config


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryStateStore:
    return MemoryStateStore(clock=clock.time)


@pytest.fixture
def records(store: MemoryStateStore, clock: FakeClock) -> EnforcementRepository:
    return EnforcementRepository(store, clock=clock.now)


@pytest.fixture
def config() -> ConfigHolder:
    return ConfigHolder(resolve_config({"community_name": "pics"}))


@pytest.fixture
def platform(clock: FakeClock) -> FakePlatform:
    return FakePlatform(clock)


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def orchestrator(platform, records, scheduler, dispatcher, config) -> EscalationOrchestrator:
    return EscalationOrchestrator(
        platform=platform,
        records=records,
        scheduler=scheduler,
        notifier=dispatcher,
        config_provider=config,
    )


@pytest.fixture
def appeals(orchestrator: EscalationOrchestrator) -> AppealHandler:
    return AppealHandler(orchestrator)
