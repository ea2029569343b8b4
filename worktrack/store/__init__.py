"""Storage collaborators for the workflow core."""

from worktrack.store.jsonfile import JsonFileStore
from worktrack.store.memory import InMemoryStore
from worktrack.store.ports import Changeset, TrackerStore

__all__ = [
    "Changeset",
    "InMemoryStore",
    "JsonFileStore",
    "TrackerStore",
]
