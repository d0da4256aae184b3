"""Member directory implementations used for display projections."""

import logging
from collections.abc import Mapping

from taskcycle.core import db_client


logger = logging.getLogger(__name__)

UNASSIGNED_NAME = "Unassigned"
UNKNOWN_MEMBER_NAME = "Unknown member"


class StaticMemberDirectory:
    """Directory backed by a fixed mapping of user ID to display name."""

    def __init__(self, names: Mapping[str, str] | None = None) -> None:
        self._names = dict(names or {})

    async def resolve_display_name(self, user_id: str) -> str:
        return self._names.get(user_id, UNKNOWN_MEMBER_NAME)


class SqliteMemberDirectory:
    """Directory reading the ``members`` table; falls back to email, then a placeholder."""

    def __init__(self, *, db_path: str | None = None) -> None:
        self._db_path = db_path

    async def resolve_display_name(self, user_id: str) -> str:
        record = await db_client.fetch_one(
            "SELECT display_name, email FROM members WHERE id = ?",
            (user_id,),
            db_path=self._db_path,
        )
        if record is None:
            logger.debug("Member %s not found in directory", user_id)
            return UNKNOWN_MEMBER_NAME
        return record["display_name"] or record["email"] or UNKNOWN_MEMBER_NAME
