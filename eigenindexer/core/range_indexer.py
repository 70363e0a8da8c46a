"""
The range indexer walks a stream's block range in fixed-size batches,
persists decoded events idempotently and advances the stream cursor.
"""

from typing import Dict, Iterator, List, Optional, Tuple

from eigenindexer.core.deployment_block import DeploymentBlockResolver
from eigenindexer.core.event_store import EventRecord
from eigenindexer.core.event_store_async import AsyncEventStore
from eigenindexer.core.event_streams import EventStream
from eigenindexer.core.rpc_gateway import RpcGateway
from eigenindexer.core.types import PassResult
from eigenindexer.utils.error_utils import ConfigurationError
from eigenindexer.utils.log import get_default_logger

_LOG = get_default_logger(__name__)


def split_range(start_block: int, end_block: int, batch_size: int) -> Iterator[Tuple[int, int]]:
    """
    Split a closed block range into closed sub-ranges of at most batch_size blocks.

    :param start_block: First block of the range.
    :param end_block: Last block of the range.
    :param batch_size: The maximum number of blocks per sub-range.
    :return: An iterator over (from_block, to_block) tuples in ascending order.
    """
    if batch_size < 1:
        raise ValueError(f"Batch size must be positive, got {batch_size}")
    from_block = start_block
    while from_block <= end_block:
        to_block = min(from_block + batch_size - 1, end_block)
        yield from_block, to_block
        from_block = to_block + 1


class RangeIndexer:
    """
    Indexes one event stream.
    The indexer holds no re-entrancy state; callers serialize passes.
    """

    # pylint: disable-msg=too-many-arguments
    def __init__(
        self,
        stream: EventStream,
        gateway: RpcGateway,
        store: AsyncEventStore,
        resolver: DeploymentBlockResolver,
        batch_size: Optional[int] = None,
    ):
        """
        Initialize the indexer.

        :param stream: The stream definition.
        :param gateway: The chain node gateway.
        :param store: The async event store.
        :param resolver: The deployment block resolver.
        :param batch_size: The number of blocks per sub-range.
            Defaults to the stream's batch size.
        """
        self.stream = stream
        self.gateway = gateway
        self.store = store
        self.resolver = resolver
        self.batch_size = batch_size if batch_size is not None else stream.default_batch_size
        if self.batch_size < 1:
            raise ValueError(f"Batch size must be positive, got {self.batch_size}")

    @property
    def stream_name(self) -> str:
        """The name of the indexed stream."""
        return self.stream.name.value

    async def deployment_block(self) -> int:
        """
        Resolve the first block of the stream's history.

        :return: The deployment block of the stream's contract.
        """
        return await self.resolver.resolve(
            self.stream.address, self.stream.deployment_config
        )

    async def fetch_batch(self, from_block: int, to_block: int) -> List[EventRecord]:
        """
        Fetch and decode the events of one sub-range.

        :param from_block: First block of the sub-range.
        :param to_block: Last block of the sub-range.
        :return: The decoded records ordered by (block_number, log_index).
        """
        logs = await self.gateway.get_logs(self.stream.log_filter(from_block, to_block))
        logs = sorted(logs, key=self.stream.log_position)
        block_timestamps: Dict[int, int] = {}
        records = []
        for log in logs:
            records.append(await self.stream.decode(log, self.gateway, block_timestamps))
        return records

    def _extends_cursor(
        self, cursor: int, from_block: int, to_block: int, origin: Optional[int]
    ) -> bool:
        if to_block <= cursor:
            return False
        if from_block <= cursor + 1:
            return True
        return cursor == 0 and origin is not None and from_block <= origin

    async def _index_range(
        self, start_block: int, end_block: int, origin: Optional[int]
    ) -> PassResult:
        batches = 0
        events = 0
        for from_block, to_block in split_range(start_block, end_block, self.batch_size):
            records = await self.fetch_batch(from_block, to_block)
            written = await self.store.upsert_events(self.stream_name, records)

            cursor = await self.store.get_last_indexed_block(self.stream_name)
            if self._extends_cursor(cursor, from_block, to_block, origin):
                await self.store.advance_cursor(self.stream_name, to_block)

            batches += 1
            events += written
            _LOG.info(
                "Indexed %s blocks %s-%s: %s logs, %s new rows",
                self.stream_name,
                from_block,
                to_block,
                len(records),
                written,
            )
        return PassResult(
            stream=self.stream_name,
            start_block=start_block,
            end_block=end_block,
            batches=batches,
            events=events,
        )

    async def index_new_blocks(self) -> PassResult:
        """
        Bring the stream up to date with the chain head.
        Starts after the persisted cursor, or at the deployment block
        if the stream was never indexed.

        :return: The pass result.
        """
        cursor = await self.store.get_last_indexed_block(self.stream_name)
        origin = None
        if cursor == 0:
            origin = await self.deployment_block()
            start_block = origin
        else:
            start_block = cursor + 1
        end_block = await self.gateway.get_block_number()

        if start_block > end_block:
            _LOG.debug("%s is up to date at block %s", self.stream_name, cursor)
            return PassResult(
                stream=self.stream_name, start_block=start_block, end_block=end_block
            )

        _LOG.info(
            "Indexing %s from block %s to %s", self.stream_name, start_block, end_block
        )
        return await self._index_range(start_block, end_block, origin)

    async def backfill(self, start_block: int, end_block: int) -> PassResult:
        """
        Index an explicit block range.
        A start block of 0 means the deployment block.
        On a stream that was never indexed, a range starting at or before
        the deployment block advances the cursor.
        The cursor only moves when the range extends the covered territory.

        :param start_block: First block of the range, 0 for the deployment block.
        :param end_block: Last block of the range.
        :return: The pass result.
        """
        if start_block < 0 or end_block < 0:
            raise ValueError(
                f"Block numbers must not be negative: {start_block}-{end_block}"
            )
        origin = None
        if start_block == 0:
            origin = await self.deployment_block()
            start_block = origin
        elif await self.store.get_last_indexed_block(self.stream_name) == 0:
            # A fresh stream counts a range starting at or before its
            # deployment block as contiguous.
            try:
                origin = await self.deployment_block()
            except ConfigurationError as e:
                _LOG.warning(
                    "Cannot resolve the deployment block of %s, the cursor stays at 0: %s",
                    self.stream_name,
                    e,
                )

        if start_block > end_block:
            _LOG.warning(
                "Nothing to backfill for %s: start %s is after end %s",
                self.stream_name,
                start_block,
                end_block,
            )
            return PassResult(
                stream=self.stream_name, start_block=start_block, end_block=end_block
            )

        _LOG.info(
            "Backfilling %s from block %s to %s", self.stream_name, start_block, end_block
        )
        return await self._index_range(start_block, end_block, origin)
