"""Shared test fixtures."""

import json
import sys
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.config import Settings  # noqa: E402
from vitals.adapters.fixture import FixtureProvider  # noqa: E402
from vitals.domain.models import SampleRecord  # noqa: E402
from vitals.locks import KeyedLock  # noqa: E402
from vitals.store import InMemorySampleStore  # noqa: E402
from vitals.sync import SyncOrchestrator  # noqa: E402

FIXTURES_DIR = Path(__file__).parent / "fixtures"

USER_ID = "user-123"
UTC_ZONE = ZoneInfo("UTC")

# 2024-03-14 (a Thursday) in UTC
DAY_START = 1_710_374_400_000
HOUR = 3_600_000
MINUTE = 60_000
NOW = DAY_START + 9 * HOUR + 15 * MINUTE  # 09:15


def load_fixture(name: str) -> dict:
    return json.loads((FIXTURES_DIR / name).read_text())


def sample(timestamp_millis: int, user_id: str = USER_ID, **fields) -> SampleRecord:
    return SampleRecord(user_id=user_id, timestamp_millis=timestamp_millis, **fields)


class FixedClock:
    """Settable clock returning epoch millis."""

    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def google_fit_payloads():
    return load_fixture("google_fit_day.json")


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        timezone="UTC",
        adapter_mode="fixture",
        store_backend="memory",
        sync_timeout_seconds=2.0,
    )


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def locks():
    return KeyedLock()


@pytest.fixture
def store(locks):
    return InMemorySampleStore(guard=locks)


@pytest.fixture
def provider(google_fit_payloads):
    return FixtureProvider(google_fit_payloads, account_id="google-account-1")


@pytest.fixture
def orchestrator(store, provider, locks, test_settings, clock):
    return SyncOrchestrator(
        store, provider, locks=locks, config=test_settings, tz=UTC_ZONE, clock=clock
    )
