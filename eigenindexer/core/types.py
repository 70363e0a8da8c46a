"""
Core types shared by the indexing, scheduling and analytics components.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class StreamName(str, Enum):
    """Identifiers of the indexed event streams."""

    POD_DEPLOYED = "pod_deployed"
    STAKED_ETH = "staked_eth"


class PassState(Enum):
    """Re-entrancy state of a stream's indexing passes."""

    IDLE = "idle"
    RUNNING = "running"


@dataclass(frozen=True)
class MaterializedRow:
    """
    Per-block deposit summary.

    Attributes:
        block_number (int): The block number.
        block_timestamp (int): The block timestamp in seconds since the epoch.
        event_count (int): The number of deposits in the block.
        total_deposited (str): The sum of deposited wei as a base-10 string.
    """

    block_number: int
    block_timestamp: int
    event_count: int
    total_deposited: str


@dataclass(frozen=True)
class PassResult:
    """
    Outcome of an indexing pass or backfill.

    Attributes:
        stream (str): The stream name.
        start_block (int | None): First block of the range, None if the pass was skipped.
        end_block (int | None): Last block of the range, None if the pass was skipped.
        batches (int): The number of committed sub-ranges.
        events (int): The number of newly inserted rows.
        skipped (bool): True if another pass for the stream was in flight.
    """

    stream: str
    start_block: Optional[int] = None
    end_block: Optional[int] = None
    batches: int = 0
    events: int = 0
    skipped: bool = False

    @property
    def up_to_date(self) -> bool:
        """True if the pass found no blocks to index."""
        return (
            not self.skipped
            and self.start_block is not None
            and self.end_block is not None
            and self.start_block > self.end_block
        )


@dataclass(frozen=True)
class IndexingStatus:
    """
    Operational status of a stream.

    Attributes:
        stream (str): The stream name.
        last_indexed_block (int): The persisted cursor.
        current_block (int | None): The chain head, None if the node is unreachable.
        total_events (int): The number of indexed rows.
        is_running (bool): True if a pass is in flight.
        is_scheduled (bool): True if the periodic trigger is armed.
    """

    stream: str
    last_indexed_block: int
    current_block: Optional[int]
    total_events: int
    is_running: bool
    is_scheduled: bool

    @property
    def blocks_behind(self) -> Optional[int]:
        """The number of blocks between the cursor and the head, if known."""
        if self.current_block is None:
            return None
        return max(0, self.current_block - self.last_indexed_block)


@dataclass(frozen=True)
class DepositStats:
    """
    Aggregate statistics over all indexed deposits.

    Attributes:
        total_events (int): The number of deposits.
        total_staked (str): The sum of deposited wei as a base-10 string.
        unique_validators (int): The number of distinct validator pubkeys.
        average_stake (str): The integer average deposit in wei as a base-10 string.
        last_block (int): The highest block with a deposit, 0 if none.
    """

    total_events: int
    total_staked: str
    unique_validators: int
    average_stake: str
    last_block: int


def stream_key(stream) -> str:
    """
    Normalize a stream identifier to its string value.

    :param stream: A StreamName or its string value.
    :return: The stream name string.
    """
    return stream.value if isinstance(stream, StreamName) else str(stream)
