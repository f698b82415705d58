"""Shared test fixtures for the listsync test suite."""

from __future__ import annotations

from typing import Any

import pytest

from listsync.config import ListSyncConfig, reset_defaults


class DictProvider:
    """Snapshot provider over a mutable dict, standing in for a record."""

    def __init__(self, values: dict[str, Any] | None = None) -> None:
        self.values: dict[str, Any] = dict(values or {})

    def snapshot(self) -> dict[str, Any]:
        return dict(self.values)


class RecordingMetricsHook:
    """A metrics backend that records all calls for assertion."""

    def __init__(self) -> None:
        self.increments: list[dict[str, Any]] = []
        self.timings: list[dict[str, Any]] = []
        self.gauges: list[dict[str, Any]] = []

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        self.increments.append({"name": name, "value": value, "tags": tags})

    def timing(self, name: str, ms: float, tags: dict[str, str] | None = None) -> None:
        self.timings.append({"name": name, "ms": ms, "tags": tags})

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.gauges.append({"name": name, "value": value, "tags": tags})

    def names(self) -> list[str]:
        return [entry["name"] for entry in self.increments + self.timings + self.gauges]


@pytest.fixture(autouse=True)
def _restore_default_retry_options():
    """Keep default retry options from leaking between tests."""
    reset_defaults()
    yield
    reset_defaults()


@pytest.fixture
def config() -> ListSyncConfig:
    """Default test configuration with a dummy token."""
    return ListSyncConfig(token="test_token_1234")


@pytest.fixture
def provider() -> DictProvider:
    return DictProvider()


@pytest.fixture
def metrics() -> RecordingMetricsHook:
    return RecordingMetricsHook()


@pytest.fixture
def provider_factory():
    """Return the provider class so tests can seed initial values."""
    return DictProvider
