import pytest

from mensajero.geo import Location
from mensajero.lifecycle import OrderLifecycleManager
from mensajero.store import InMemoryOrderStore

PICKUP = Location(lat=23.1136, lng=-82.3666)
DROPOFF = Location(lat=23.1200, lng=-82.3700)
# ~1.3 km south of pickup, further still from drop-off
FAR_AWAY = Location(lat=23.1016, lng=-82.3666)


class RecordingArchiver:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.archived = []

    async def __call__(self, order) -> None:
        if self.fail:
            raise ConnectionError("archive queue unreachable")
        self.archived.append(order)


@pytest.fixture()
def store():
    return InMemoryOrderStore(stripes=8)


@pytest.fixture()
def archiver():
    return RecordingArchiver()


@pytest.fixture()
def manager(store, archiver):
    return OrderLifecycleManager(store, archiver=archiver)
