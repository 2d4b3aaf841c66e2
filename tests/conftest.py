import pytest

from utils.cache import plan_cache

NOW = 1_700_000_000_000  # whole second, epoch ms


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


def raw_alert(uuid=None, lat=51.5, lng=-0.12, type_="HAZARD", pub=1000, **extra):
    alert = {"type": type_, "subtype": "HAZARD_ON_ROAD", "pubMillis": pub,
             "location": {"x": lng, "y": lat}}
    if uuid is not None:
        alert["uuid"] = uuid
    alert.update(extra)
    return alert


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def _fresh_plan_cache():
    plan_cache.clear()
    yield
    plan_cache.clear()
