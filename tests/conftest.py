import pytest

from services.shapes import RpcShape
from services.storage_service import StorageService
from tests.fakes import FakeAppliance, FakeClock


@pytest.fixture
def appliance():
    return FakeAppliance()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_service(appliance, clock):
    """Factory building a StorageService over the fake appliance."""

    def _make(client=None, shape=None, **kwargs):
        kwargs.setdefault("sleep", clock.sleep)
        kwargs.setdefault("clock", clock)
        return StorageService(client or appliance, shape=shape or RpcShape(), **kwargs)

    return _make


@pytest.fixture
def service(make_service):
    return make_service()
