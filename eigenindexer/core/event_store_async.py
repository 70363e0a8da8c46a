"""
Asynchronous access to the event store.
Asynchronous store wraps a synchronous store object to support
async operations using asyncio.
"""

import asyncio
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from eigenindexer.core.event_store import DEFAULT_PAGE_SIZE, EventRecord, EventStore
from eigenindexer.core.models import PodDeployedEvent, StakedEthEvent
from eigenindexer.core.types import DepositStats, MaterializedRow

T = TypeVar("T")


class AsyncEventStore:
    """
    Provides async access to an EventStore.
    Every call is offloaded to the default event loop's executor
    so that database round trips do not block the event loop
    while other streams and the analytics refresher make progress.
    """

    def __init__(self, store: EventStore):
        self.store = store

    async def run(self, func: Callable[..., T], *args) -> T:
        """
        Run a blocking store operation in the default executor.

        :param func: The blocking callable.
        :param args: Positional arguments passed to func.
        :return: The result of func.
        """
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, func, *args)

    async def get_last_indexed_block(self, stream: str) -> int:
        """
        Get the persisted cursor of a stream asynchronously.

        :param stream: The stream name.
        :return: The last fully indexed block, 0 if the stream was never indexed.
        """
        return await self.run(self.store.get_last_indexed_block, stream)

    async def advance_cursor(self, stream: str, block_number: int) -> int:
        """
        Move the cursor of a stream forward asynchronously.

        :param stream: The stream name.
        :param block_number: The new last fully indexed block.
        :return: The cursor after the update.
        """
        return await self.run(self.store.advance_cursor, stream, block_number)

    async def upsert_events(self, stream: str, records: Sequence[EventRecord]) -> int:
        """
        Upsert a batch of events asynchronously.
        Each record is committed on its own.

        :param stream: The stream name.
        :param records: The event records in chain order.
        :return: The number of new rows written.
        """
        return await self.run(self.store.upsert_events, stream, list(records))

    async def get_events_in_range(
        self, stream: str, start_block: int, end_block: int
    ) -> List[EventRecord]:
        """
        Get the events of a closed block range asynchronously.

        :param stream: The stream name.
        :param start_block: First block of the range.
        :param end_block: Last block of the range.
        :return: The events ordered by (block_number, log_index).
        """
        return await self.run(
            self.store.get_events_in_range, stream, start_block, end_block
        )

    async def count_events(self, stream: str) -> int:
        """
        Count the events of a stream asynchronously.

        :param stream: The stream name.
        :return: The number of rows.
        """
        return await self.run(self.store.count_events, stream)

    async def list_events(
        self, stream: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> List[EventRecord]:
        """
        Get a page of the events of a stream asynchronously.

        :param stream: The stream name.
        :param limit: The maximum number of events.
        :param offset: The number of events to skip.
        :return: The events, most recent first.
        """
        return await self.run(self.store.list_events, stream, limit, offset)

    async def get_pod_events_by_eigen_pod(self, eigen_pod: str) -> List[PodDeployedEvent]:
        """Get the PodDeployed events of an eigen pod asynchronously."""
        return await self.run(self.store.get_pod_events_by_eigen_pod, eigen_pod)

    async def get_pod_events_by_owner(self, pod_owner: str) -> List[PodDeployedEvent]:
        """Get the PodDeployed events of a pod owner asynchronously."""
        return await self.run(self.store.get_pod_events_by_owner, pod_owner)

    async def get_deposits_by_pubkey(self, pubkey: str) -> List[StakedEthEvent]:
        """Get the deposits of a validator pubkey asynchronously."""
        return await self.run(self.store.get_deposits_by_pubkey, pubkey)

    async def get_deposits_by_withdrawal_credentials(
        self, withdrawal_credentials: str
    ) -> List[StakedEthEvent]:
        """Get the deposits with given withdrawal credentials asynchronously."""
        return await self.run(
            self.store.get_deposits_by_withdrawal_credentials, withdrawal_credentials
        )

    async def get_deposits_by_block(self, block_number: int) -> List[StakedEthEvent]:
        """Get the deposits of a block asynchronously."""
        return await self.run(self.store.get_deposits_by_block, block_number)

    async def get_deposit_stats(self) -> DepositStats:
        """Compute the deposit statistics asynchronously."""
        return await self.run(self.store.get_deposit_stats)

    async def get_raw_deposit_rows(self) -> List[Tuple[int, int, str]]:
        """
        Get (block_number, block_timestamp, amount) for all deposits asynchronously.
        The rows are collected into a list.
        Use rebuild_materialized_table to aggregate while streaming.

        :return: The deposit rows in chain order.
        """
        return await self.run(lambda: list(self.store.get_raw_deposit_rows()))

    async def replace_materialized_table(self, rows: Iterable[MaterializedRow]):
        """
        Replace the materialized deposit summary asynchronously.

        :param rows: The new summary rows.
        """
        await self.run(self.store.replace_materialized_table, rows)

    async def rebuild_materialized_table(
        self,
        aggregate: Callable[
            [Iterable[Tuple[int, int, str]]], Sequence[MaterializedRow]
        ],
    ) -> int:
        """
        Aggregate the streamed raw deposit rows and swap the result in,
        all in one executor call.

        :param aggregate: Maps the raw deposit rows to summary rows.
        :return: The number of summary rows written.
        """

        def rebuild() -> int:
            rows = aggregate(self.store.get_raw_deposit_rows())
            self.store.replace_materialized_table(rows)
            return len(rows)

        return await self.run(rebuild)

    async def query_materialized_by_block(
        self, block_number: int
    ) -> Optional[MaterializedRow]:
        """
        Get the deposit summary of a block asynchronously.

        :param block_number: The block number.
        :return: The summary or None if the block has no deposits.
        """
        return await self.run(self.store.query_materialized_by_block, block_number)

    async def query_materialized_by_range(
        self, start_block: int, end_block: int
    ) -> List[MaterializedRow]:
        """
        Get the deposit summaries of a closed block range asynchronously.

        :param start_block: First block of the range.
        :param end_block: Last block of the range.
        :return: The summaries in ascending block order.
        """
        return await self.run(
            self.store.query_materialized_by_range, start_block, end_block
        )
