import os, sys
import pytest

# Ensure calsync import path (backend root) and the shared fakes module are importable
backend_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
tests_root = os.path.abspath(os.path.dirname(__file__))
for p in (tests_root, backend_root):
    if p not in sys.path:
        sys.path.insert(0, p)

from calsync.domain.models import CalendarInfo  # noqa: E402
from calsync.repositories.calendar_cache_repository import CalendarCacheRepository  # noqa: E402
from calsync.services.cache_store import MemoryKeyValueStore  # noqa: E402
from fakes import VirtualClock  # noqa: E402


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def store(clock):
    return MemoryKeyValueStore(time_provider=clock.timestamp)


@pytest.fixture
def cache_repo(store):
    return CalendarCacheRepository(store)


@pytest.fixture
def work_calendar():
    return CalendarInfo(id="work@example.com", name="Work", color="#0b8043", access_role="owner")


@pytest.fixture
def home_calendar():
    return CalendarInfo(id="home@example.com", name="Home", color="#f4511e", access_role="reader")
