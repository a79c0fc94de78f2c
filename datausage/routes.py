"""
HTTP routes for the data usage API.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse

from datausage.config import Settings, get_settings
from datausage.coordination import TransactionCoordinator
from datausage.db import MetadataConnector
from datausage.dependencies import get_coordinator, get_metadata_connector
from datausage.exceptions import (
    BackendConnectionError,
    CommitError,
    DataUsageError,
    NotFoundError,
    UpstreamWriteError,
)
from datausage.schemas import UserDataUsageResponse
from datausage.usernames import fix_username

logger = logging.getLogger(__name__)

router = APIRouter()


def _http_error(err: DataUsageError) -> HTTPException:
    if isinstance(err, NotFoundError):
        return HTTPException(status_code=404, detail=str(err))
    if isinstance(err, BackendConnectionError):
        return HTTPException(status_code=503, detail=str(err))
    if isinstance(err, (UpstreamWriteError, CommitError)):
        return HTTPException(status_code=502, detail=str(err))
    return HTTPException(status_code=500, detail=str(err))


def _fail(err: DataUsageError, message: str, *args) -> HTTPException:
    http_error = _http_error(err)
    if http_error.status_code < 500:
        logger.info(message + ": %s", *args, err)
    else:
        logger.exception(message, *args)
    return http_error


@router.get("/", response_class=PlainTextResponse)
def greeting() -> str:
    return "Hello from data-usage-api."


@router.get("/{username}/data/current", response_model=UserDataUsageResponse)
def get_current_usage(
    username: str,
    settings: Settings = Depends(get_settings),
    metadata: MetadataConnector = Depends(get_metadata_connector),
) -> UserDataUsageResponse:
    qualified = fix_username(username, settings.user_suffix)
    usage = metadata.latest_user_data_usage(qualified)
    if usage is None:
        raise HTTPException(status_code=404, detail=f"No usage recorded for {qualified}")
    return UserDataUsageResponse.from_usage(usage)


@router.post("/{username}/data/update", response_model=UserDataUsageResponse)
def update_usage(
    username: str,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
) -> UserDataUsageResponse:
    try:
        usage = coordinator.update_user_data_usage(username)
    except DataUsageError as err:
        raise _fail(err, "Failed to update usage for %s", username) from err
    return UserDataUsageResponse.from_usage(usage)


@router.post("/data/batch", response_model=list[UserDataUsageResponse])
def update_batch(
    start: str = Query(default=""),
    end: Optional[str] = Query(default=None),
    coordinator: TransactionCoordinator = Depends(get_coordinator),
) -> list[UserDataUsageResponse]:
    try:
        usages = coordinator.update_user_data_usage_batch(start, end)
    except DataUsageError as err:
        raise _fail(err, "Failed to update usage for batch [%s, %s)", start, end) from err
    return [UserDataUsageResponse.from_usage(usage) for usage in usages]
