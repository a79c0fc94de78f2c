"""
Dependency wiring for the FastAPI app and the refresh worker.
"""

from __future__ import annotations

import logging

from datausage.config import get_settings
from datausage.coordination import TransactionCoordinator
from datausage.db import MetadataConnector
from datausage.icat import IcatConnector
from datausage.publisher import UsagePublisher
from datausage.queue import InMemoryUsageEventQueue, RedisUsageEventQueue, UsageEventQueue

logger = logging.getLogger(__name__)

_metadata_connector: MetadataConnector | None = None
_icat_connector: IcatConnector | None = None
_event_queue: UsageEventQueue | None = None
_publisher: UsagePublisher | None = None


def get_metadata_connector() -> MetadataConnector:
    """
    Return a singleton DE database connector so the engine's pool is shared.
    """
    global _metadata_connector
    if _metadata_connector:
        return _metadata_connector

    settings = get_settings()
    _metadata_connector = MetadataConnector(settings.db.uri, settings.db.schema_name)
    return _metadata_connector


def get_icat_connector() -> IcatConnector:
    global _icat_connector
    if _icat_connector:
        return _icat_connector

    settings = get_settings()
    _icat_connector = IcatConnector(
        settings.icat.uri,
        zone=settings.icat.zone,
        root_resources=settings.icat.root_resources,
        user_suffix=settings.user_suffix,
    )
    return _icat_connector


def get_event_queue() -> UsageEventQueue:
    global _event_queue
    if _event_queue:
        return _event_queue

    settings = get_settings()
    if settings.redis.url:
        _event_queue = RedisUsageEventQueue(
            url=settings.redis.url,
            queue_key=settings.redis.queue_key,
        )
    else:
        logger.warning(
            "redis.url is not set; usage events are kept in a bounded in-memory queue "
            "and are not delivered to any consumer"
        )
        _event_queue = InMemoryUsageEventQueue()
    return _event_queue


def get_publisher() -> UsagePublisher:
    global _publisher
    if _publisher:
        return _publisher

    _publisher = UsagePublisher(get_metadata_connector(), get_event_queue())
    return _publisher


def get_coordinator() -> TransactionCoordinator:
    """
    Return a new coordinator. Coordinators hold open transactions and are
    never shared between operations.
    """
    return TransactionCoordinator(
        get_metadata_connector(),
        get_icat_connector(),
        get_publisher(),
        get_settings(),
    )
