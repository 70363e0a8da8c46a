"""
Periodic and manual triggering of a stream's indexing passes.
"""

from typing import Awaitable, Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from eigenindexer.core.range_indexer import RangeIndexer
from eigenindexer.core.types import IndexingStatus, PassResult, PassState
from eigenindexer.utils.log import get_default_logger

_LOG = get_default_logger(__name__)

# Cron expression running a pass every minute.
DEFAULT_CRON = "* * * * *"


class IndexerScheduler:
    """
    Runs indexing passes of one stream on a cron schedule or on demand.
    At most one pass per stream is in flight;
    an invocation arriving while a pass runs is skipped.
    """

    def __init__(self, indexer: RangeIndexer, apscheduler: AsyncIOScheduler):
        """
        Initialize the scheduler.

        :param indexer: The stream's range indexer.
        :param apscheduler: The shared APScheduler instance.
            Its lifecycle is managed by the caller.
        """
        self.indexer = indexer
        self.apscheduler = apscheduler
        self.state = PassState.IDLE
        self.job_id = f"index-{indexer.stream_name}"

    @property
    def stream_name(self) -> str:
        """The name of the scheduled stream."""
        return self.indexer.stream_name

    @property
    def is_running(self) -> bool:
        """True if a pass is in flight."""
        return self.state == PassState.RUNNING

    @property
    def is_scheduled(self) -> bool:
        """True if the periodic job is armed."""
        return self.apscheduler.get_job(self.job_id) is not None

    async def _guarded(
        self, description: str, operation: Callable[[], Awaitable[PassResult]]
    ) -> PassResult:
        # No await between the check and the set.
        if self.state == PassState.RUNNING:
            _LOG.info(
                "%s of %s skipped, a pass is already running",
                description,
                self.stream_name,
            )
            return PassResult(stream=self.stream_name, skipped=True)
        self.state = PassState.RUNNING
        try:
            return await operation()
        finally:
            self.state = PassState.IDLE

    async def _tick(self):
        try:
            await self._guarded("Scheduled pass", self.indexer.index_new_blocks)
        except Exception:  # pylint: disable=broad-except
            _LOG.exception("Scheduled pass of %s failed", self.stream_name)

    def start(self, cron_expression: str = DEFAULT_CRON):
        """
        Arm the periodic pass.
        Restarting replaces the previous schedule.

        :param cron_expression: A five-field crontab expression.
        """
        trigger = CronTrigger.from_crontab(cron_expression)
        self.apscheduler.add_job(
            self._tick,
            trigger,
            id=self.job_id,
            name=f"Index {self.stream_name}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        _LOG.info("Scheduled %s indexing with cron '%s'", self.stream_name, cron_expression)

    def stop(self):
        """
        Disarm the periodic pass.
        A pass in flight is allowed to finish.
        """
        try:
            self.apscheduler.remove_job(self.job_id)
            _LOG.info("Stopped scheduled indexing of %s", self.stream_name)
        except JobLookupError:
            _LOG.debug("Indexing of %s was not scheduled", self.stream_name)

    async def run_once(self) -> PassResult:
        """
        Run one pass now.
        Errors are raised to the caller.

        :return: The pass result, skipped if a pass was already running.
        """
        return await self._guarded("Manual pass", self.indexer.index_new_blocks)

    async def backfill(self, start_block: int, end_block: int) -> PassResult:
        """
        Index an explicit range under the same guard as the scheduled passes.
        Errors are raised to the caller.

        :param start_block: First block of the range, 0 for the deployment block.
        :param end_block: Last block of the range.
        :return: The pass result, skipped if a pass was already running.
        """
        return await self._guarded(
            "Backfill", lambda: self.indexer.backfill(start_block, end_block)
        )

    async def deployment_block(self) -> int:
        """
        Get the resolved deployment block of the stream's contract.

        :return: The deployment block.
        """
        return await self.indexer.deployment_block()

    async def status(self) -> IndexingStatus:
        """
        Report the operational status of the stream.
        The chain head is None if the node cannot be reached.

        :return: The status.
        """
        store = self.indexer.store
        last_indexed_block = await store.get_last_indexed_block(self.stream_name)
        total_events = await store.count_events(self.stream_name)
        current_block: Optional[int]
        try:
            current_block = await self.indexer.gateway.get_block_number()
        except Exception as e:  # pylint: disable=broad-except
            _LOG.warning("Could not get the chain head for %s status: %s", self.stream_name, e)
            current_block = None
        return IndexingStatus(
            stream=self.stream_name,
            last_indexed_block=last_indexed_block,
            current_block=current_block,
            total_events=total_events,
            is_running=self.is_running,
            is_scheduled=self.is_scheduled,
        )
