"""Shared test fixtures for backend tests.

Aggregators are built against an in-memory ListCollector and, where time
matters, a FakeClock, so tests run without Redis or sleeps.
"""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from aggregator import AggregatorService, TrajectoryAggregator
from common.settings import AggregatorConfig
from tests.fakes import FakeClock
from topology.collector import ListCollector


@pytest.fixture()
def collector() -> ListCollector:
    return ListCollector()


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def aggregator_factory(collector, fake_clock):
    """Create a TrajectoryAggregator wired to the shared collector and fake clock.

    Keyword overrides go to AggregatorConfig, except expected_reporters.
    """

    def _factory(expected_reporters: int = 1, **config_overrides) -> TrajectoryAggregator:
        defaults = dict(
            min_distance=5.0,
            max_tracker_length=15,
            first_frame_id=1,
            window_size=64,
            frame_ttl_seconds=30.0,
        )
        defaults.update(config_overrides)
        return TrajectoryAggregator(
            collector,
            expected_reporters=expected_reporters,
            config=AggregatorConfig(**defaults),
            clock=fake_clock,
        )

    return _factory


@pytest.fixture()
def service_factory(collector):
    """Create AggregatorServices on the real clock; shuts them all down on teardown."""
    created: list[AggregatorService] = []

    def _factory(expected_reporters: int = 1, service_kwargs: dict | None = None, **config_overrides):
        defaults = dict(min_distance=5.0, max_tracker_length=15, frame_ttl_seconds=30.0)
        defaults.update(config_overrides)
        aggregator = TrajectoryAggregator(
            collector,
            expected_reporters=expected_reporters,
            config=AggregatorConfig(**defaults),
        )
        service = AggregatorService(aggregator, **(service_kwargs or {}))
        created.append(service)
        return service

    yield _factory

    for service in created:
        service.shutdown()


@pytest.fixture()
def mock_redis() -> MagicMock:
    return MagicMock()
