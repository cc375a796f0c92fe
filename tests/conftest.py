
import pytest

from mock_tool.mock_engine import MockEngine
from mock_tool.responder import MockResponder


@pytest.fixture
def engine():
    return MockEngine(log=False)


@pytest.fixture
def responder(engine):
    return MockResponder(engine)
