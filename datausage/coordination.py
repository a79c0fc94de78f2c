"""
Coordinates work across the ICAT and DE databases.

The two databases share no distributed transaction. Usage is read from the
ICAT in a short read-only transaction that is rolled back before anything is
written, then written to the DE database and published. A batch commits the
DE user rows before publishing; if publishing then fails those rows stay and
re-running the batch brings everything back in line.

A coordinator holds at most one open transaction per database and must not be
shared between concurrent operations. Create one per operation.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Protocol

from datausage.config import Settings
from datausage.db import MetadataDatabase, UserDataUsage
from datausage.exceptions import (
    BackendConnectionError,
    CommitError,
    DataUsageError,
    NoRowsError,
    NotFoundError,
    TransactionFinalizedError,
    UpstreamWriteError,
)
from datausage.icat import IcatDatabase
from datausage.usernames import fix_username

logger = logging.getLogger(__name__)

METADATA = "DE"
USAGE_SOURCE = "ICAT"


class TxConnector(Protocol):
    def pool_status(self) -> str:
        ...

    def begin(self):
        ...


class Publisher(Protocol):
    def update_usage_for_user(
        self, settings: Settings, username: str, usage: float
    ) -> UserDataUsage:
        ...

    def add_user_updates_batch(
        self, settings: Settings, usages: dict[str, float]
    ) -> list[UserDataUsage]:
        ...


class TransactionState:
    """
    One backend transaction owned by a coordinator.

    Open from construction until the first commit or rollback, Closed after.
    Once Closed both methods do nothing, so stale references are harmless.
    """

    def __init__(self, backend: str, db, log: logging.Logger):
        self.backend = backend
        self._db = db
        self._log = log

    @property
    def is_open(self) -> bool:
        return self._db is not None

    @property
    def db(self):
        return self._db

    def rollback(self) -> None:
        db, self._db = self._db, None
        if db is None:
            return
        try:
            db.rollback()
        except TransactionFinalizedError:
            pass
        except Exception:
            self._log.exception("Error rolling back %s database transaction", self.backend)

    def commit(self) -> None:
        db, self._db = self._db, None
        if db is None:
            return
        try:
            db.commit()
        except Exception as err:
            self._log.error("Error committing %s database transaction: %s", self.backend, err)
            raise CommitError(f"Error committing {self.backend} database transaction") from err


class TransactionCoordinator:
    def __init__(
        self,
        metadata: TxConnector,
        usage_source: TxConnector,
        publisher: Publisher,
        settings: Settings,
        log: Optional[logging.Logger] = None,
    ):
        self.metadata = metadata
        self.usage_source = usage_source
        self.publisher = publisher
        self.settings = settings
        self.log = log or logger
        self.metadata_tx: Optional[TransactionState] = None
        self.usage_source_tx: Optional[TransactionState] = None

    def _open(
        self, backend: str, connector: TxConnector, current: Optional[TransactionState]
    ) -> TransactionState:
        self.log.debug("%s connection pool: %s", backend, connector.pool_status())
        if current is not None and current.is_open:
            return current
        try:
            db = connector.begin()
        except Exception as err:
            raise BackendConnectionError(f"Error creating {backend} transaction") from err
        return TransactionState(backend, db, self.log)

    def open_metadata_tx(self) -> MetadataDatabase:
        self.metadata_tx = self._open(METADATA, self.metadata, self.metadata_tx)
        return self.metadata_tx.db

    def open_usage_source_tx(self) -> IcatDatabase:
        self.usage_source_tx = self._open(USAGE_SOURCE, self.usage_source, self.usage_source_tx)
        return self.usage_source_tx.db

    def commit_metadata(self) -> None:
        state, self.metadata_tx = self.metadata_tx, None
        if state is not None:
            state.commit()

    def rollback_metadata(self) -> None:
        state, self.metadata_tx = self.metadata_tx, None
        if state is not None:
            state.rollback()

    def commit_usage_source(self) -> None:
        state, self.usage_source_tx = self.usage_source_tx, None
        if state is not None:
            state.commit()

    def rollback_usage_source(self) -> None:
        state, self.usage_source_tx = self.usage_source_tx, None
        if state is not None:
            state.rollback()

    @contextmanager
    def metadata_transaction(self) -> Iterator[MetadataDatabase]:
        db = self.open_metadata_tx()
        try:
            yield db
        finally:
            self.rollback_metadata()

    @contextmanager
    def usage_source_transaction(self) -> Iterator[IcatDatabase]:
        db = self.open_usage_source_tx()
        try:
            yield db
        finally:
            self.rollback_usage_source()

    def update_user_data_usage(self, username: str) -> UserDataUsage:
        """Read one user's usage from the ICAT, record it and publish it."""
        username = fix_username(username, self.settings.user_suffix)

        with self.metadata_transaction() as dedb:
            try:
                user_info = dedb.get_user_info(username)
            except NoRowsError as err:
                raise NotFoundError(f"error getting user info: {username} does not exist") from err
            except Exception as err:
                raise DataUsageError("error getting user info") from err

            # Closed before publishing; the ICAT transaction is only read from.
            with self.usage_source_transaction() as icatdb:
                try:
                    usage = icatdb.user_current_data_usage(username)
                except NoRowsError:
                    usage = 0
                    self.log.info(
                        "No usage information was found for user %s. Attempting to add a usage of 0 anyway",
                        username,
                    )
                except Exception as err:
                    raise DataUsageError("Error getting current data usage") from err

            self.log.debug("username %s; usage value %d", username, usage)
            # Readings are not deduplicated or amended; that belongs to a
            # separate cleanup process, not this path.

            try:
                result = self.publisher.update_usage_for_user(self.settings, username, float(usage))
            except NoRowsError as err:
                self.log.error("No data could be inserted for %s: %s", username, err)
                raise UpstreamWriteError(
                    "No data could be inserted. Perhaps the user doesn't exist in the DE database"
                ) from err
            except Exception as err:
                self.log.error("Error adding user data usage for %s: %s", username, err)
                raise UpstreamWriteError("Error adding user data usage") from err

        result.user_id = user_info.id
        result.username = user_info.username
        return result

    def update_user_data_usage_batch(
        self, start: str, end: Optional[str] = None
    ) -> list[UserDataUsage]:
        """
        Refresh usage for every user in ``[start, end)``.

        Missing DE users are created and committed before publishing, and are
        not removed if publishing fails.
        """
        with self.usage_source_transaction() as icatdb:
            try:
                usages = icatdb.batch_current_data_usage(start, end)
            except Exception as err:
                raise DataUsageError("Error getting batch data usage") from err

        self.log.debug("usages in batch: %s", usages)

        fixed: dict[str, float] = {}
        for username, usage in usages.items():
            fixed[fix_username(username, self.settings.user_suffix)] = float(usage)
        usernames = list(fixed)

        if usernames:
            with self.metadata_transaction() as dedb:
                try:
                    dedb.ensure_users(usernames)
                except Exception as err:
                    raise DataUsageError("Error ensuring users exist") from err
                self.commit_metadata()
        else:
            self.log.debug("No users to be ensured in the batch")

        try:
            return self.publisher.add_user_updates_batch(self.settings, fixed)
        except Exception as err:
            self.log.error("Error inserting new usage: %s", err)
            raise UpstreamWriteError("Error inserting new usage") from err
