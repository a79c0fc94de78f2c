"""
Pydantic schemas for the HTTP API.
"""

from __future__ import annotations

from pydantic import BaseModel

from datausage.db import UserDataUsage


class UserDataUsageResponse(BaseModel):
    id: str
    user_id: str
    username: str
    total: float
    time: float
    last_modified: float

    @classmethod
    def from_usage(cls, usage: UserDataUsage) -> "UserDataUsageResponse":
        return cls(**usage.as_dict())
