"""SQL models for indexed events, indexing cursors and analytics."""

import time
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def now_ms() -> int:
    """Current UTC time in milliseconds since the epoch."""
    return int(time.time() * 1000)


class PodDeployedEvent(SQLModel, table=True):
    """ORM model for the pod_deployed_events table, one row per PodDeployed log."""

    __tablename__ = "pod_deployed_events"
    __table_args__ = (
        UniqueConstraint(
            "transaction_hash", "log_index", name="uq_pod_deployed_events_tx_log"
        ),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    eigen_pod: str = Field(index=True)
    pod_owner: str = Field(index=True)
    block_number: int = Field(index=True)
    transaction_hash: str = Field(index=False)
    log_index: int = Field(index=False)
    created_at: int = Field(default_factory=now_ms, index=False)


class StakedEthEvent(SQLModel, table=True):
    """ORM model for the staked_eth_events table, one row per deposit contract DepositEvent log.

    Amounts are wei as base-10 strings since they do not fit 64-bit columns.
    """

    __tablename__ = "staked_eth_events"
    __table_args__ = (
        UniqueConstraint(
            "transaction_hash", "log_index", name="uq_staked_eth_events_tx_log"
        ),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    pubkey: str = Field(index=True)
    withdrawal_credentials: str = Field(index=True)
    amount: str = Field(index=False)
    signature: str = Field(index=False)
    deposit_index: str = Field(index=False)
    block_number: int = Field(index=True)
    block_timestamp: int = Field(index=False)
    transaction_hash: str = Field(index=False)
    log_index: int = Field(index=False)
    created_at: int = Field(default_factory=now_ms, index=False)


class IndexingCursor(SQLModel, table=True):
    """ORM model for the indexing_cursor table, the last fully indexed block per stream."""

    __tablename__ = "indexing_cursor"
    stream: str = Field(primary_key=True)
    last_indexed_block: int = Field(default=0, index=False)
    updated_at: int = Field(default_factory=now_ms, index=False)


class StakedEthByBlock(SQLModel, table=True):
    """ORM model for the staked_eth_by_block table, the materialized per-block deposit summary.

    The table is rebuilt wholesale on every refresh.
    It carries no secondary indexes so that a staging copy can be renamed into place.
    """

    __tablename__ = "staked_eth_by_block"
    block_number: int = Field(primary_key=True, sa_column_kwargs={"autoincrement": False})
    block_timestamp: int = Field(primary_key=True, sa_column_kwargs={"autoincrement": False})
    event_count: int = Field(index=False)
    total_deposited: str = Field(index=False)
