"""Identity collaborator: answers whether a user id exists."""

from typing import Iterable, Protocol


class Directory(Protocol):
    def exists(self, user_id: str) -> bool:
        ...


class OpenDirectory:
    """Accepts every non-empty id. For deployments where identity is checked upstream."""

    def exists(self, user_id: str) -> bool:
        return bool(user_id)


class StaticDirectory:
    """Fixed set of known user ids."""

    def __init__(self, user_ids: Iterable[str]):
        self.user_ids = set(user_ids)

    def add(self, user_id: str) -> None:
        self.user_ids.add(user_id)

    def exists(self, user_id: str) -> bool:
        return user_id in self.user_ids
