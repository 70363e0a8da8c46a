"""
The event store module persists indexed events, indexing cursors
and the materialized deposit analytics.
"""

from abc import ABC
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Type, Union

from sqlalchemy import MetaData, Table, distinct, func, inspect, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, create_engine, select

from eigenindexer.core.models import (
    IndexingCursor,
    PodDeployedEvent,
    StakedEthByBlock,
    StakedEthEvent,
    now_ms,
)
from eigenindexer.core.types import DepositStats, MaterializedRow, StreamName, stream_key
from eigenindexer.utils.log import get_default_logger

_LOG = get_default_logger(__name__)

EventRecord = Union[PodDeployedEvent, StakedEthEvent]

STREAM_MODELS: Dict[str, Type[SQLModel]] = {
    StreamName.POD_DEPLOYED.value: PodDeployedEvent,
    StreamName.STAKED_ETH.value: StakedEthEvent,
}

# Number of rows fetched or inserted per round trip for bulk operations.
_CHUNK_SIZE = 1000

DEFAULT_PAGE_SIZE = 100


def get_stream_model(stream: str) -> Type[SQLModel]:
    """
    Get the ORM model storing the events of a stream.

    :param stream: The stream name.
    :return: The model class.
    """
    try:
        return STREAM_MODELS[stream_key(stream)]
    except KeyError as e:
        raise ValueError(f"Unknown stream: {stream}") from e


class EventStore(ABC):
    """
    Base storage operations used by the indexer and the analytics consumers.
    All writes are independently durable; no transaction spans an indexing pass.
    """

    def get_last_indexed_block(self, stream: str) -> int:
        """
        Returns the persisted cursor of a stream.

        :param stream: The stream name.
        :return: The last fully indexed block, 0 if the stream was never indexed.
        """
        raise NotImplementedError()

    def advance_cursor(self, stream: str, block_number: int) -> int:
        """
        Moves the cursor of a stream forward.
        A block at or below the current cursor leaves the cursor unchanged.

        :param stream: The stream name.
        :param block_number: The new last fully indexed block.
        :return: The cursor after the update.
        """
        raise NotImplementedError()

    def upsert_event(self, stream: str, record: EventRecord) -> bool:
        """
        Inserts an event unless a row with the same
        (transaction_hash, log_index) already exists.

        :param stream: The stream name.
        :param record: The event record.
        :return: True if a new row was written.
        """
        raise NotImplementedError()

    def upsert_events(self, stream: str, records: Iterable[EventRecord]) -> int:
        """
        Upserts events one by one, each in its own transaction.

        :param stream: The stream name.
        :param records: The event records in chain order.
        :return: The number of new rows written.
        """
        return sum(1 for record in records if self.upsert_event(stream, record))

    def get_events_in_range(
        self, stream: str, start_block: int, end_block: int
    ) -> List[EventRecord]:
        """
        Returns the events with start_block <= block_number <= end_block
        ordered by (block_number, log_index).

        :param stream: The stream name.
        :param start_block: First block of the range.
        :param end_block: Last block of the range.
        :return: The list of events.
        """
        raise NotImplementedError()

    def count_events(self, stream: str) -> int:
        """
        Returns the number of indexed events of a stream.

        :param stream: The stream name.
        :return: The number of rows.
        """
        raise NotImplementedError()

    def list_events(
        self, stream: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> List[EventRecord]:
        """
        Returns a page of the events of a stream, most recent first.

        :param stream: The stream name.
        :param limit: The maximum number of events.
        :param offset: The number of events to skip.
        :return: The list of events.
        """
        raise NotImplementedError()

    def get_pod_events_by_eigen_pod(self, eigen_pod: str) -> List[PodDeployedEvent]:
        """
        Returns the PodDeployed events of an eigen pod address, most recent first.

        :param eigen_pod: The eigen pod address in any casing.
        :return: The list of events.
        """
        raise NotImplementedError()

    def get_pod_events_by_owner(self, pod_owner: str) -> List[PodDeployedEvent]:
        """
        Returns the PodDeployed events of a pod owner address, most recent first.

        :param pod_owner: The owner address in any casing.
        :return: The list of events.
        """
        raise NotImplementedError()

    def get_deposits_by_pubkey(self, pubkey: str) -> List[StakedEthEvent]:
        """
        Returns the deposits of a validator pubkey, most recent first.

        :param pubkey: The hex encoded pubkey.
        :return: The list of deposits.
        """
        raise NotImplementedError()

    def get_deposits_by_withdrawal_credentials(
        self, withdrawal_credentials: str
    ) -> List[StakedEthEvent]:
        """
        Returns the deposits with given withdrawal credentials, most recent first.

        :param withdrawal_credentials: The hex encoded credentials.
        :return: The list of deposits.
        """
        raise NotImplementedError()

    def get_deposits_by_block(self, block_number: int) -> List[StakedEthEvent]:
        """
        Returns the deposits of a block ordered by log index.

        :param block_number: The block number.
        :return: The list of deposits.
        """
        return self.get_events_in_range(
            StreamName.STAKED_ETH.value, block_number, block_number
        )

    def get_deposit_stats(self) -> DepositStats:
        """
        Computes statistics over all deposits.

        :return: The deposit statistics.
        """
        raise NotImplementedError()

    def get_raw_deposit_rows(self) -> Iterator[Tuple[int, int, str]]:
        """
        Streams (block_number, block_timestamp, amount) for all deposits.

        :return: An iterator over the deposit rows.
        """
        raise NotImplementedError()

    def replace_materialized_table(self, rows: Iterable[MaterializedRow]):
        """
        Replaces the materialized deposit summary.
        The previous table stays readable until the new one is fully built.

        :param rows: The new summary rows.
        """
        raise NotImplementedError()

    def query_materialized_by_block(self, block_number: int) -> Optional[MaterializedRow]:
        """
        Returns the deposit summary of a block.

        :param block_number: The block number.
        :return: The summary or None if the block has no deposits.
        """
        raise NotImplementedError()

    def query_materialized_by_range(
        self, start_block: int, end_block: int
    ) -> List[MaterializedRow]:
        """
        Returns the deposit summaries of a closed block range in ascending order.

        :param start_block: First block of the range.
        :param end_block: Last block of the range.
        :return: The list of summaries.
        """
        raise NotImplementedError()


class SQLEventStore(EventStore):
    """
    Event store backed by a SQL database through SQLModel.
    Any SQLAlchemy URL works; inserts use the native insert-or-ignore
    of SQLite and PostgreSQL and fall back to catching IntegrityError elsewhere.
    """

    def __init__(self, db_url: str, engine_kwargs: dict | None = None):
        if engine_kwargs is None:
            engine_kwargs = {}

        self.db_engine = create_engine(db_url, **engine_kwargs)
        SQLModel.metadata.create_all(
            self.db_engine,
            tables=[
                PodDeployedEvent.__table__,
                StakedEthEvent.__table__,
                IndexingCursor.__table__,
                StakedEthByBlock.__table__,
            ],
        )

    def close(self):
        """Release the pooled connections."""
        self.db_engine.dispose()

    def get_last_indexed_block(self, stream: str) -> int:
        with Session(self.db_engine) as session:
            cursor = session.get(IndexingCursor, stream_key(stream))
            return cursor.last_indexed_block if cursor is not None else 0

    def advance_cursor(self, stream: str, block_number: int) -> int:
        with Session(self.db_engine) as session:
            cursor = session.get(IndexingCursor, stream_key(stream))
            if cursor is None:
                cursor = IndexingCursor(stream=stream_key(stream), last_indexed_block=0)
            if block_number <= cursor.last_indexed_block:
                return cursor.last_indexed_block
            cursor.last_indexed_block = block_number
            cursor.updated_at = now_ms()
            session.add(cursor)
            session.commit()
            _LOG.debug("Cursor of %s advanced to %s", stream, block_number)
            return block_number

    def _insert_or_ignore(self, model: Type[SQLModel], values: dict) -> bool:
        table = model.__table__
        dialect = self.db_engine.dialect.name
        if dialect in ("sqlite", "postgresql"):
            insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
            statement = insert(table).values(**values).on_conflict_do_nothing(
                index_elements=["transaction_hash", "log_index"]
            )
            with self.db_engine.begin() as conn:
                return conn.execute(statement).rowcount == 1
        try:
            with self.db_engine.begin() as conn:
                conn.execute(table.insert().values(**values))
            return True
        except IntegrityError:
            return False

    def upsert_event(self, stream: str, record: EventRecord) -> bool:
        model = get_stream_model(stream)
        if not isinstance(record, model):
            raise TypeError(
                f"Record of type {type(record).__name__} does not belong to stream {stream}"
            )
        values = record.model_dump(exclude={"id"})
        return self._insert_or_ignore(model, values)

    def get_events_in_range(
        self, stream: str, start_block: int, end_block: int
    ) -> List[EventRecord]:
        model = get_stream_model(stream)
        with Session(self.db_engine) as session:
            statement = (
                select(model)
                .where(model.block_number >= start_block)
                .where(model.block_number <= end_block)
                .order_by(model.block_number, model.log_index)
            )
            return list(session.exec(statement).all())

    def count_events(self, stream: str) -> int:
        model = get_stream_model(stream)
        with Session(self.db_engine) as session:
            return int(session.exec(select(func.count()).select_from(model)).one())

    def list_events(
        self, stream: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> List[EventRecord]:
        if limit <= 0 or offset < 0:
            raise ValueError(f"Invalid page: limit {limit}, offset {offset}")
        model = get_stream_model(stream)
        with Session(self.db_engine) as session:
            statement = (
                select(model)
                .order_by(model.block_number.desc(), model.log_index.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(session.exec(statement).all())

    def get_pod_events_by_eigen_pod(self, eigen_pod: str) -> List[PodDeployedEvent]:
        """
        Find all PodDeployed events for an eigen pod address.
        Most recent events come first.
        """
        with Session(self.db_engine) as session:
            statement = (
                select(PodDeployedEvent)
                .where(func.lower(PodDeployedEvent.eigen_pod) == eigen_pod.lower())
                .order_by(
                    PodDeployedEvent.block_number.desc(),
                    PodDeployedEvent.log_index.desc(),
                )
            )
            return list(session.exec(statement).all())

    def get_pod_events_by_owner(self, pod_owner: str) -> List[PodDeployedEvent]:
        """
        Find all PodDeployed events for a pod owner address.
        Most recent events come first.
        """
        with Session(self.db_engine) as session:
            statement = (
                select(PodDeployedEvent)
                .where(func.lower(PodDeployedEvent.pod_owner) == pod_owner.lower())
                .order_by(
                    PodDeployedEvent.block_number.desc(),
                    PodDeployedEvent.log_index.desc(),
                )
            )
            return list(session.exec(statement).all())

    def get_deposits_by_pubkey(self, pubkey: str) -> List[StakedEthEvent]:
        """
        Find all deposits for a validator pubkey.
        Most recent deposits come first.
        """
        # Hex fields are stored lower case.
        with Session(self.db_engine) as session:
            statement = (
                select(StakedEthEvent)
                .where(StakedEthEvent.pubkey == pubkey.lower())
                .order_by(
                    StakedEthEvent.block_number.desc(), StakedEthEvent.log_index.desc()
                )
            )
            return list(session.exec(statement).all())

    def get_deposits_by_withdrawal_credentials(
        self, withdrawal_credentials: str
    ) -> List[StakedEthEvent]:
        """
        Find all deposits for withdrawal credentials.
        Most recent deposits come first.
        """
        with Session(self.db_engine) as session:
            statement = (
                select(StakedEthEvent)
                .where(
                    StakedEthEvent.withdrawal_credentials
                    == withdrawal_credentials.lower()
                )
                .order_by(
                    StakedEthEvent.block_number.desc(), StakedEthEvent.log_index.desc()
                )
            )
            return list(session.exec(statement).all())

    def get_deposit_stats(self) -> DepositStats:
        """
        Compute statistics over all deposits.
        Amounts are summed as Python integers.
        Rows with amounts that do not parse are left out of the total.
        """
        total = 0
        with Session(self.db_engine) as session:
            count = int(session.exec(select(func.count()).select_from(StakedEthEvent)).one())
            unique_validators = int(
                session.exec(select(func.count(distinct(StakedEthEvent.pubkey)))).one()
            )
            last_block = session.exec(select(func.max(StakedEthEvent.block_number))).one()
            statement = select(StakedEthEvent.transaction_hash, StakedEthEvent.amount)
            for tx_hash, amount in session.exec(
                statement.execution_options(yield_per=_CHUNK_SIZE)
            ):
                try:
                    total += int(amount)
                except (TypeError, ValueError):
                    _LOG.warning(
                        "Skipping unparsable amount %r of deposit in %s", amount, tx_hash
                    )
        average = total // count if count > 0 else 0
        return DepositStats(
            total_events=count,
            total_staked=str(total),
            unique_validators=unique_validators,
            average_stake=str(average),
            last_block=int(last_block or 0),
        )

    def get_raw_deposit_rows(self) -> Iterator[Tuple[int, int, str]]:
        with Session(self.db_engine) as session:
            statement = (
                select(
                    StakedEthEvent.block_number,
                    StakedEthEvent.block_timestamp,
                    StakedEthEvent.amount,
                )
                .order_by(StakedEthEvent.block_number, StakedEthEvent.log_index)
                .execution_options(yield_per=_CHUNK_SIZE)
            )
            for row in session.exec(statement):
                yield int(row[0]), int(row[1]), row[2]

    def _rename_table(self, conn, old_name: str, new_name: str):
        preparer = self.db_engine.dialect.identifier_preparer
        conn.execute(
            text(
                f"ALTER TABLE {preparer.quote(old_name)} "
                f"RENAME TO {preparer.quote(new_name)}"
            )
        )

    @staticmethod
    def _has_table(conn, name: str) -> bool:
        return inspect(conn).has_table(name)

    def _recover_materialized_table(self, staging: Table, backup_name: str):
        """
        Put a live summary table back in place after a failed swap.
        SQLite commits each DDL statement on its own, so the swap
        may stop between the two renames.
        """
        live_name = StakedEthByBlock.__table__.name
        with self.db_engine.begin() as conn:
            if not self._has_table(conn, live_name):
                if self._has_table(conn, backup_name):
                    self._rename_table(conn, backup_name, live_name)
                elif self._has_table(conn, staging.name):
                    self._rename_table(conn, staging.name, live_name)
        staging.drop(self.db_engine, checkfirst=True)

    def replace_materialized_table(self, rows: Iterable[MaterializedRow]):
        live = StakedEthByBlock.__table__
        # Unique names keep constraint names from clashing with the live table.
        stamp = now_ms()
        staging = live.to_metadata(MetaData(), name=f"{live.name}_staging_{stamp}")
        backup_name = f"{live.name}_backup_{stamp}"

        staging.create(self.db_engine)
        try:
            with self.db_engine.begin() as conn:
                chunk = []
                for row in rows:
                    chunk.append(
                        {
                            "block_number": row.block_number,
                            "block_timestamp": row.block_timestamp,
                            "event_count": row.event_count,
                            "total_deposited": row.total_deposited,
                        }
                    )
                    if len(chunk) >= _CHUNK_SIZE:
                        conn.execute(staging.insert(), chunk)
                        chunk = []
                if chunk:
                    conn.execute(staging.insert(), chunk)
        except Exception:
            staging.drop(self.db_engine, checkfirst=True)
            raise

        # Swap the fully built table in. The previous table is kept
        # as a backup until the new one is live.
        try:
            with self.db_engine.begin() as conn:
                if self._has_table(conn, live.name):
                    self._rename_table(conn, live.name, backup_name)
                self._rename_table(conn, staging.name, live.name)
        except Exception:
            _LOG.error("Swap of %s failed, restoring the previous table", live.name)
            self._recover_materialized_table(staging, backup_name)
            raise

        Table(backup_name, MetaData()).drop(self.db_engine, checkfirst=True)

    @staticmethod
    def _to_materialized_row(row: StakedEthByBlock) -> MaterializedRow:
        return MaterializedRow(
            block_number=int(row.block_number),
            block_timestamp=int(row.block_timestamp),
            event_count=int(row.event_count),
            total_deposited=str(row.total_deposited),
        )

    def query_materialized_by_block(self, block_number: int) -> Optional[MaterializedRow]:
        with Session(self.db_engine) as session:
            statement = select(StakedEthByBlock).where(
                StakedEthByBlock.block_number == block_number
            )
            row = session.exec(statement).first()
            return self._to_materialized_row(row) if row is not None else None

    def query_materialized_by_range(
        self, start_block: int, end_block: int
    ) -> List[MaterializedRow]:
        with Session(self.db_engine) as session:
            statement = (
                select(StakedEthByBlock)
                .where(StakedEthByBlock.block_number >= start_block)
                .where(StakedEthByBlock.block_number <= end_block)
                .order_by(StakedEthByBlock.block_number)
            )
            return [self._to_materialized_row(row) for row in session.exec(statement)]
