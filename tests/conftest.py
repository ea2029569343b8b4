"""Shared fixtures: a tracker over the in-memory store with a controllable clock."""

import itertools
from datetime import datetime, timedelta

import pytest
import pytz

from worktrack.identity import StaticDirectory
from worktrack.lib.config import TrackerConfig
from worktrack.store import InMemoryStore
from worktrack.workflow.tracker import Tracker

USERS = ["alice", "bob", "carol", "client"]


class FakeClock:
    """Returns a fixed time that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, user_id, event):
        self.sent.append((user_id, event))


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 1, 15, 10, 0, tzinfo=pytz.UTC))


@pytest.fixture
def ids():
    counter = itertools.count(1)
    return lambda: f"id{next(counter):04d}"


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def tracker(store, clock, ids, notifier):
    tracker = Tracker(
        store,
        config=TrackerConfig(),
        directory=StaticDirectory(USERS),
        notifier=notifier,
        clock=clock,
        id_factory=ids,
    )
    tracker.register_project("p1", "MAR", actor_id="alice", name="Marketing site")
    return tracker
