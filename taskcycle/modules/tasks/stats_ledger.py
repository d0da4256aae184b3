"""Member statistics mutations, each a single atomic store delta."""

import logging

from taskcycle.domain.stats import MemberStat, StatsDelta
from taskcycle.stores.base import StatsStore


logger = logging.getLogger(__name__)


class StatsLedger:
    def __init__(self, store: StatsStore) -> None:
        self._store = store

    async def credit(self, group_id: str, user_id: str, stars_delta: int, count_delta: int = 1) -> MemberStat:
        stat = await self._store.apply_delta(
            group_id,
            user_id,
            StatsDelta(completed_count=count_delta, completed_stars=stars_delta),
        )
        logger.info(
            "Credited member",
            extra={"group_id": group_id, "user_id": user_id, "stars": stars_delta, "count": count_delta},
        )
        return stat

    async def penalize(self, group_id: str, user_id: str, overdue_delta: int, stars_delta: int) -> MemberStat:
        stat = await self._store.apply_delta(
            group_id,
            user_id,
            StatsDelta(overdue_count=overdue_delta, completed_stars=stars_delta),
        )
        logger.info(
            "Penalized member",
            extra={"group_id": group_id, "user_id": user_id, "stars": stars_delta, "overdue": overdue_delta},
        )
        return stat

    async def reverse_credit(self, group_id: str, user_id: str, difficulty: int) -> MemberStat:
        """Take back the credit of one completion worth ``difficulty`` stars."""
        return await self.credit(group_id, user_id, stars_delta=-difficulty, count_delta=-1)

    async def standings(self, group_id: str) -> list[MemberStat]:
        return await self._store.list_by_group(group_id)
