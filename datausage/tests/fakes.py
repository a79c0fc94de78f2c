"""
Recording test doubles for the coordinator's collaborators.

Every fake appends to a shared ``calls`` list so tests can assert ordering
across the two databases and the publisher.
"""

from __future__ import annotations

from datausage.config import Settings
from datausage.db import UserDataUsage, UserInfo
from datausage.exceptions import NoRowsError, TransactionFinalizedError

DOMAIN = "iplantcollaborative.org"


def make_settings(**overrides) -> Settings:
    values = {
        "db": {"uri": "sqlite+pysqlite:///:memory:", "schema": "public"},
        "icat": {
            "uri": "sqlite+pysqlite:///:memory:",
            "zone": "iplant",
            "rootResources": ["CyVerseRes"],
        },
        "users": {"domain": DOMAIN},
        "dataUsageApi": {"refreshInterval": "24h"},
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeTxDatabase:
    def __init__(self, name: str, calls: list):
        self.name = name
        self.calls = calls
        self.finalized = False
        self.commit_error: Exception | None = None
        self.rollback_error: Exception | None = None

    def _finalize(self, action: str) -> None:
        if self.finalized:
            raise TransactionFinalizedError()
        self.finalized = True
        self.calls.append((self.name, action))

    def commit(self) -> None:
        self._finalize("commit")
        if self.commit_error:
            raise self.commit_error

    def rollback(self) -> None:
        self._finalize("rollback")
        if self.rollback_error:
            raise self.rollback_error


class FakeMetadataDatabase(FakeTxDatabase):
    def __init__(self, calls: list, users: dict[str, str]):
        super().__init__("DE", calls)
        self.users = users
        self.ensure_error: Exception | None = None

    def get_user_info(self, username: str) -> UserInfo:
        if username not in self.users:
            raise NoRowsError(username)
        return UserInfo(id=self.users[username], username=username)

    def ensure_users(self, usernames) -> None:
        self.calls.append(("DE", "ensure_users", list(usernames)))
        if self.ensure_error:
            raise self.ensure_error
        for username in usernames:
            self.users.setdefault(username, f"id-{username}")


class FakeIcatDatabase(FakeTxDatabase):
    def __init__(self, calls: list, usages: dict[str, int]):
        super().__init__("ICAT", calls)
        self.usages = usages

    def user_current_data_usage(self, username: str) -> int:
        bare = username.split("@", 1)[0]
        self.calls.append(("ICAT", "user_current_data_usage", bare))
        if bare not in self.usages:
            raise NoRowsError(bare)
        return self.usages[bare]

    def batch_current_data_usage(self, start: str, end: str | None = None) -> dict[str, int]:
        self.calls.append(("ICAT", "batch_current_data_usage", start, end))
        return {
            name: usage
            for name, usage in self.usages.items()
            if name >= start and (not end or name < end)
        }


class FakeConnector:
    def __init__(self, factory):
        self.factory = factory
        self.opened: list = []
        self.begin_error: Exception | None = None
        self.status_checks = 0

    def pool_status(self) -> str:
        self.status_checks += 1
        return "fake pool"

    def begin(self):
        if self.begin_error:
            raise self.begin_error
        db = self.factory()
        self.opened.append(db)
        return db


class FakePublisher:
    def __init__(self, calls: list):
        self.calls = calls
        self.error: Exception | None = None
        self.batch_result: list[UserDataUsage] | None = None

    def update_usage_for_user(self, settings, username: str, usage: float) -> UserDataUsage:
        self.calls.append(("publisher", "update_usage_for_user", username, usage))
        if self.error:
            raise self.error
        return UserDataUsage(id="usage-1", user_id="", username="", total=usage)

    def add_user_updates_batch(self, settings, usages: dict[str, float]) -> list[UserDataUsage]:
        self.calls.append(("publisher", "add_user_updates_batch", dict(usages)))
        if self.error:
            raise self.error
        if self.batch_result is not None:
            return self.batch_result
        return [
            UserDataUsage(id=f"usage-{name}", user_id=f"id-{name}", username=name, total=usage)
            for name, usage in usages.items()
        ]
