"""
Read access to the iRODS ICAT database, the authoritative source of data usage.

Usage is the total size of the data objects a user owns on any resource in the
hierarchies below the configured root resources.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session, sessionmaker

from datausage.db import TxDatabase, begin_session, create_db_engine
from datausage.exceptions import NoRowsError
from datausage.usernames import strip_username

# iRODS stores the parent of a resource as the parent's id in a string column.
RESOURCES_CTE = """
WITH RECURSIVE resources (resc_id) AS (
    SELECT resc_id FROM r_resc_main WHERE resc_name IN :root_resources
    UNION
    SELECT child.resc_id
      FROM r_resc_main child
      JOIN resources parent ON child.resc_parent = CAST(parent.resc_id AS VARCHAR)
)
"""

USER_USAGE_QUERY = text(
    RESOURCES_CTE
    + """
SELECT d.data_owner_name AS username, SUM(d.data_size) AS total
  FROM r_data_main d
 WHERE d.data_owner_name = :username
   AND d.data_owner_zone = :zone
   AND d.resc_id IN (SELECT resc_id FROM resources)
 GROUP BY d.data_owner_name
"""
).bindparams(bindparam("root_resources", expanding=True))

BATCH_USAGE_SELECT = (
    RESOURCES_CTE
    + """
SELECT u.user_name AS username, COALESCE(SUM(d.data_size), 0) AS total
  FROM r_user_main u
  LEFT JOIN r_data_main d
    ON d.data_owner_name = u.user_name
   AND d.data_owner_zone = u.zone_name
   AND d.resc_id IN (SELECT resc_id FROM resources)
 WHERE u.zone_name = :zone
   AND u.user_type_name = 'rodsuser'
   AND u.user_name >= :start
"""
)

BATCH_USAGE_QUERY = text(
    BATCH_USAGE_SELECT + " GROUP BY u.user_name"
).bindparams(bindparam("root_resources", expanding=True))

BOUNDED_BATCH_USAGE_QUERY = text(
    BATCH_USAGE_SELECT + "   AND u.user_name < :end\n GROUP BY u.user_name"
).bindparams(bindparam("root_resources", expanding=True))


class IcatDatabase(TxDatabase):
    """ICAT queries inside one (read-only) transaction."""

    def __init__(
        self,
        session: Session,
        *,
        zone: str,
        root_resources: list[str],
        user_suffix: str,
    ):
        super().__init__(session)
        self.zone = zone
        self.root_resources = list(root_resources)
        self.user_suffix = user_suffix

    def user_current_data_usage(self, username: str) -> int:
        """Return the user's current usage in bytes; ``NoRowsError`` if none."""
        row = self.session.execute(
            USER_USAGE_QUERY,
            {
                "username": strip_username(username, self.user_suffix),
                "zone": self.zone,
                "root_resources": self.root_resources,
            },
        ).first()
        if row is None:
            raise NoRowsError(f"no usage recorded for {username}")
        return int(row.total or 0)

    def batch_current_data_usage(
        self, start: str, end: Optional[str] = None
    ) -> dict[str, int]:
        """
        Return usage for every user whose bare name is in ``[start, end)``.

        Bounds may be qualified usernames. An empty or missing ``end`` leaves
        the range open at the top. Users without data report 0.
        """
        params = {
            "start": strip_username(start or "", self.user_suffix),
            "zone": self.zone,
            "root_resources": self.root_resources,
        }
        query = BATCH_USAGE_QUERY
        if end:
            params["end"] = strip_username(end, self.user_suffix)
            query = BOUNDED_BATCH_USAGE_QUERY
        rows = self.session.execute(query, params)
        return {row.username: int(row.total or 0) for row in rows}


class IcatConnector:
    """Engine and session factory for the ICAT database."""

    def __init__(
        self,
        database_url: str,
        *,
        zone: str,
        root_resources: list[str],
        user_suffix: str,
    ):
        if not database_url:
            raise ValueError("icat.uri is required for IcatConnector")
        self.engine = create_db_engine(database_url)
        self.Session = sessionmaker(bind=self.engine, class_=Session, future=True)
        self.zone = zone
        self.root_resources = list(root_resources)
        self.user_suffix = user_suffix

    def pool_status(self) -> str:
        return self.engine.pool.status()

    def begin(self) -> IcatDatabase:
        return IcatDatabase(
            begin_session(self.Session),
            zone=self.zone,
            root_resources=self.root_resources,
            user_suffix=self.user_suffix,
        )
