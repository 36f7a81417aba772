import pytest

from tests.fakes import FakeGateway


@pytest.fixture
def gateway():
    return FakeGateway()
