import random
from datetime import datetime, timedelta

import pytest

from flashdeck.db import init_db
from flashdeck.errors import StoreWriteFailure
from flashdeck.flashcards import CardRepository
from flashdeck.store import SqliteCardStore
from flashdeck.study import StudySessionManager


@pytest.fixture
def tmp_db(tmp_path):
    """Provide a temporary SQLite database path for tests."""
    db_path = str(tmp_path / "test_flashdeck.db")
    return db_path


@pytest.fixture
def store(tmp_db):
    init_db(tmp_db)
    return SqliteCardStore(tmp_db)


@pytest.fixture
def deck(store):
    return store.create_deck("Biology")


@pytest.fixture
def repository(store):
    return CardRepository(store)


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock(datetime.now().replace(microsecond=0))


@pytest.fixture
def manager(repository, clock):
    return StudySessionManager(repository, clock=clock, sleep=lambda s: None, rng=random.Random(7))


class FlakyStore:
    """Wraps a store and fails the named methods a given number of times."""

    def __init__(self, inner, **failures):
        self.inner = inner
        self.failures = failures
        self.calls = {name: 0 for name in failures}

    def __getattr__(self, name):
        attr = getattr(self.inner, name)
        if name not in self.failures:
            return attr

        def wrapper(*args, **kwargs):
            self.calls[name] += 1
            if self.failures[name] > 0:
                self.failures[name] -= 1
                raise StoreWriteFailure(f"{name} unavailable")
            return attr(*args, **kwargs)

        return wrapper


@pytest.fixture
def make_flaky(store, clock):
    """Build a manager whose store fails the given methods N times."""
    def build(**failures):
        flaky = FlakyStore(store, **failures)
        repo = CardRepository(flaky)
        sleeps = []
        mgr = StudySessionManager(repo, clock=clock, sleep=sleeps.append, rng=random.Random(7))
        return mgr, flaky, sleeps
    return build
