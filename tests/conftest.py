import pytest

from posterwall.engine.scheduler import ManualScheduler
from tests.fakes import RecordingSurface


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def surface() -> RecordingSurface:
    return RecordingSurface()
