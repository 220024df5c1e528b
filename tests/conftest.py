import pytest

from .helpers import FakeConnector, RecordingSink


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def sink():
    return RecordingSink()
