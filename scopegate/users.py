"""
In-memory user directory.

User accounts are managed elsewhere; scopegate only needs to know whether a
user ID exists when it is added to a role. The directory is seeded from
`settings.user_ids` by the server, and from fixtures in tests.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from scopegate.errors import UnknownUser


@dataclass(frozen=True)
class User:
    id: str


class InMemoryUserDirectory:
    """UserDirectory over a fixed set of user IDs."""

    def __init__(self, user_ids: Iterable[str] = ()):
        self._users = {user_id: User(user_id) for user_id in user_ids}

    def add(self, user_id: str) -> User:
        return self._users.setdefault(user_id, User(user_id))

    async def find_user_by_id(self, user_id: str) -> User:
        try:
            return self._users[user_id]
        except KeyError:
            raise UnknownUser(user_id) from None
