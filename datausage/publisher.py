"""
Records new usage readings in the DE database and publishes them.

Each reading is stored as a new ``user_data_usage`` row. Readings are never
deduplicated or amended here.
"""

from __future__ import annotations

import json
import logging
import time
import uuid

from sqlalchemy import select

from datausage.config import Settings
from datausage.db import (
    MetadataConnector,
    UserDataUsage,
    UserDataUsageRow,
    UserRow,
    chunked,
    to_user_data_usage,
)
from datausage.exceptions import NoRowsError
from datausage.queue import UsageEventQueue

logger = logging.getLogger(__name__)


class UsagePublisher:
    def __init__(self, metadata: MetadataConnector, queue: UsageEventQueue):
        self.metadata = metadata
        self.queue = queue

    def _publish(self, settings: Settings, usage: UserDataUsage) -> None:
        event = usage.as_dict()
        event["zone"] = settings.icat.zone
        self.queue.publish(json.dumps(event))

    def update_usage_for_user(
        self, settings: Settings, username: str, usage: float
    ) -> UserDataUsage:
        """
        Insert a usage reading for ``username`` and publish it.

        Raises ``NoRowsError`` if the user does not exist in the DE database.
        """
        now = time.time()
        with self.metadata.Session() as session:
            user = session.execute(
                select(UserRow).where(UserRow.username == username)
            ).scalar_one_or_none()
            if user is None:
                raise NoRowsError(f"no user named {username}")
            row = UserDataUsageRow(
                id=uuid.uuid4().hex,
                user_id=user.id,
                total=usage,
                time=now,
                last_modified=now,
            )
            session.add(row)
            session.commit()
            record = to_user_data_usage(row, user.username)

        self._publish(settings, record)
        return record

    def add_user_updates_batch(
        self, settings: Settings, usages: dict[str, float]
    ) -> list[UserDataUsage]:
        """Insert and publish one reading per username in ``usages``."""
        if not usages:
            return []

        now = time.time()
        records: list[UserDataUsage] = []
        with self.metadata.Session() as session:
            user_ids: dict[str, str] = {}
            for chunk in chunked(sorted(usages)):
                for user in session.scalars(
                    select(UserRow).where(UserRow.username.in_(chunk))
                ):
                    user_ids[user.username] = user.id

            rows: list[tuple[UserDataUsageRow, str]] = []
            for username, usage in usages.items():
                user_id = user_ids.get(username)
                if user_id is None:
                    logger.warning("Skipping usage for unknown user %s", username)
                    continue
                row = UserDataUsageRow(
                    id=uuid.uuid4().hex,
                    user_id=user_id,
                    total=usage,
                    time=now,
                    last_modified=now,
                )
                session.add(row)
                rows.append((row, username))
            session.commit()
            records = [to_user_data_usage(row, username) for row, username in rows]

        for record in records:
            self._publish(settings, record)
        logger.info("Published %d usage updates", len(records))
        return records
