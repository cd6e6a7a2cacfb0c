import pytest

from fakes import FakeAssetStore, FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FakeAssetStore()
