"""Shared pytest fixtures and configuration."""

import logging
from collections.abc import Iterator

import pytest
from prometheus_client import REGISTRY


@pytest.fixture(autouse=True)
def reset_prometheus_registry():
    """Reset Prometheus registry before each test to avoid duplicate metric errors."""
    collectors = list(REGISTRY._collector_to_names.keys())

    # Unregister all collectors except default ones
    for collector in collectors:
        try:
            REGISTRY.unregister(collector)
        except Exception:
            pass  # Ignore errors for default collectors

    yield

    collectors = list(REGISTRY._collector_to_names.keys())
    for collector in collectors:
        try:
            REGISTRY.unregister(collector)
        except Exception:
            pass


class RecordingHandler(logging.Handler):
    """Keeps every record it receives."""

    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def edge_records() -> Iterator[list[logging.LogRecord]]:
    """Capture records of the ``edgeroute`` logger.

    The structured logger stops propagation to the root logger, so caplog
    does not see these records.
    """
    handler = RecordingHandler()
    logger = logging.getLogger("edgeroute")
    level = logger.level
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    yield handler.records
    logger.removeHandler(handler)
    logger.setLevel(level)
