"""
The materialized view module maintains the per-block deposit summary
derived from the raw deposit table.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from eigenindexer.core.event_store_async import AsyncEventStore
from eigenindexer.core.types import MaterializedRow
from eigenindexer.utils.log import get_default_logger

_LOG = get_default_logger(__name__)

DEFAULT_REFRESH_SECONDS = 60


def aggregate_deposits(rows: Iterable[Tuple[int, int, str]]) -> List[MaterializedRow]:
    """
    Group raw deposit rows by (block_number, block_timestamp).
    Amounts are summed as Python integers.
    Rows with amounts that do not parse are skipped with a warning.

    :param rows: (block_number, block_timestamp, amount) tuples.
    :return: The summaries in ascending block order.
    """
    groups: Dict[Tuple[int, int], List[int]] = {}
    skipped = 0
    for block_number, block_timestamp, amount in rows:
        try:
            value = int(amount)
        except (TypeError, ValueError):
            _LOG.warning(
                "Skipping deposit in block %s with unparsable amount %r",
                block_number,
                amount,
            )
            skipped += 1
            continue
        group = groups.setdefault((block_number, block_timestamp), [0, 0])
        group[0] += 1
        group[1] += value

    if skipped > 0:
        _LOG.warning("Skipped %s deposits with unparsable amounts", skipped)
    return [
        MaterializedRow(
            block_number=block_number,
            block_timestamp=block_timestamp,
            event_count=count,
            total_deposited=str(total),
        )
        for (block_number, block_timestamp), (count, total) in sorted(groups.items())
    ]


class MaterializedViewRefresher:
    """
    Rebuilds the per-block deposit summary on an interval.
    The previous summary stays queryable until a new one is fully built.
    """

    def __init__(self, store: AsyncEventStore, apscheduler: AsyncIOScheduler):
        """
        Initialize the refresher.

        :param store: The async event store.
        :param apscheduler: The shared APScheduler instance.
            Its lifecycle is managed by the caller.
        """
        self.store = store
        self.apscheduler = apscheduler
        self.job_id = "refresh-staked-eth-by-block"

    @property
    def is_scheduled(self) -> bool:
        """True if the periodic refresh is armed."""
        return self.apscheduler.get_job(self.job_id) is not None

    async def refresh(self) -> int:
        """
        Rebuild the summary from the raw deposit rows.
        Errors are raised to the caller.

        :return: The number of summary rows written.
        """
        count = await self.store.rebuild_materialized_table(aggregate_deposits)
        _LOG.info("Refreshed deposit summary with %s blocks", count)
        return count

    async def _scheduled_refresh(self):
        try:
            await self.refresh()
        except Exception:  # pylint: disable=broad-except
            _LOG.exception("Scheduled deposit summary refresh failed")

    async def start(self, interval_seconds: int = DEFAULT_REFRESH_SECONDS):
        """
        Refresh once now, then arm the periodic refresh.
        A failed eager refresh is logged and the schedule is armed regardless.

        :param interval_seconds: The refresh interval in seconds.
        """
        if interval_seconds <= 0:
            raise ValueError(f"Refresh interval must be positive, got {interval_seconds}")
        await self._scheduled_refresh()
        self.apscheduler.add_job(
            self._scheduled_refresh,
            "interval",
            seconds=interval_seconds,
            id=self.job_id,
            name="Refresh deposit summary",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        _LOG.info("Scheduled deposit summary refresh every %s seconds", interval_seconds)

    def stop(self):
        """Disarm the periodic refresh."""
        try:
            self.apscheduler.remove_job(self.job_id)
            _LOG.info("Stopped deposit summary refresh")
        except JobLookupError:
            _LOG.debug("Deposit summary refresh was not scheduled")

    async def get_by_block(self, block_number: int) -> Optional[MaterializedRow]:
        """
        Get the deposit summary of a block.

        :param block_number: The block number.
        :return: The summary or None if the block has no deposits.
        """
        return await self.store.query_materialized_by_block(block_number)

    async def get_by_block_range(
        self, start_block: int, end_block: int
    ) -> List[MaterializedRow]:
        """
        Get the deposit summaries of a closed block range.

        :param start_block: First block of the range.
        :param end_block: Last block of the range.
        :return: The summaries in ascending block order.
        """
        return await self.store.query_materialized_by_range(start_block, end_block)

    async def get_range_total(self, start_block: int, end_block: int) -> str:
        """
        Sum the deposits of a closed block range.

        :param start_block: First block of the range.
        :param end_block: Last block of the range.
        :return: The total in wei as a base-10 string.
        """
        rows = await self.get_by_block_range(start_block, end_block)
        return str(sum(int(row.total_deposited) for row in rows))
