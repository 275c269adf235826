"""Fixtures for the release action tests."""

import pytest

from release_engine.action import Configuration
from release_engine.chart import Chart, ChartMetadata

from . import (
    CHART_NAME,
    JOB_HOOK,
    NOTES,
    SERVICE,
    FakeClock,
    FakeConnection,
    FakeRenderer,
)


@pytest.fixture(name="files")
def mock_files() -> dict[str, str]:
    """Rendered files of the demo chart."""
    return {
        f"{CHART_NAME}/templates/service.yaml": SERVICE,
        f"{CHART_NAME}/templates/job.yaml": JOB_HOOK,
        f"{CHART_NAME}/templates/NOTES.txt": NOTES,
    }


@pytest.fixture(name="chart")
def mock_chart() -> Chart:
    """The demo chart."""
    return Chart(
        metadata=ChartMetadata(name=CHART_NAME, version="0.1.0", app_version="1.0"),
        values={"replicaCount": 1},
    )


@pytest.fixture(name="renderer")
def mock_renderer(files: dict[str, str]) -> FakeRenderer:
    """A renderer producing the demo chart files."""
    return FakeRenderer(files)


@pytest.fixture(name="connection")
def mock_connection() -> FakeConnection:
    """A connection to a fake cluster."""
    return FakeConnection()


@pytest.fixture(name="config")
def mock_config(renderer: FakeRenderer, connection: FakeConnection) -> Configuration:
    """A configuration using the memory driver against the fake cluster."""
    config = Configuration(renderer, timestamper=FakeClock())
    config.init(connection, "default", "memory")
    return config
