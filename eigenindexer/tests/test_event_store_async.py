"""
Tests of the asynchronous event store
"""

import asyncio
import unittest

from eigenindexer.core.event_store_async import AsyncEventStore
from eigenindexer.core.models import PodDeployedEvent, StakedEthEvent
from eigenindexer.core.types import MaterializedRow, StreamName
from eigenindexer.tests.utils import TempStoreMixin, make_address

_POD = StreamName.POD_DEPLOYED.value
_DEPOSIT = StreamName.STAKED_ETH.value
_PUBKEY = "0x" + "aa" * 48
_CREDENTIALS = "0x01" + "00" * 11 + "bb" * 20


class TestAsyncEventStore(TempStoreMixin, unittest.TestCase):
    """
    Test that the async wrappers reach the wrapped store.
    """

    def setUp(self):
        super().setUp()
        self.async_store = AsyncEventStore(self.store)
        self.owner = make_address(7)
        self.store.upsert_events(
            _POD,
            [
                PodDeployedEvent(
                    eigen_pod=make_address(0x100 + i),
                    pod_owner=self.owner,
                    block_number=10 + i,
                    transaction_hash=f"0x{i:064x}",
                    log_index=0,
                )
                for i in range(3)
            ],
        )
        self.store.upsert_events(
            _DEPOSIT,
            [
                StakedEthEvent(
                    pubkey=_PUBKEY,
                    withdrawal_credentials=_CREDENTIALS,
                    amount=amount,
                    signature="0x" + "05" * 96,
                    deposit_index=str(i),
                    block_number=block_number,
                    block_timestamp=1600000000 + block_number * 12,
                    transaction_hash=f"0x{i + 100:064x}",
                    log_index=i,
                )
                for i, (block_number, amount) in enumerate(
                    [(20, "1000000000000000000"), (20, "2"), (21, "3")]
                )
            ],
        )

    def test_lookups(self):
        async def scenario():
            return (
                await self.async_store.list_events(_POD, 2, 1),
                await self.async_store.get_pod_events_by_owner(self.owner),
                await self.async_store.get_pod_events_by_eigen_pod(make_address(0x101)),
                await self.async_store.get_deposits_by_pubkey(_PUBKEY),
                await self.async_store.get_deposits_by_withdrawal_credentials(_CREDENTIALS),
                await self.async_store.get_deposits_by_block(20),
            )

        page, by_owner, by_pod, by_pubkey, by_credentials, by_block = asyncio.run(scenario())

        self.assertEqual([e.block_number for e in page], [11, 10])
        self.assertEqual([e.block_number for e in by_owner], [12, 11, 10])
        self.assertEqual([e.block_number for e in by_pod], [11])
        self.assertEqual(len(by_pubkey), 3)
        self.assertEqual(len(by_credentials), 3)
        self.assertEqual([e.log_index for e in by_block], [0, 1])

    def test_deposit_stats(self):
        stats = asyncio.run(self.async_store.get_deposit_stats())

        self.assertEqual(stats.total_events, 3)
        self.assertEqual(stats.total_staked, "1000000000000000005")
        self.assertEqual(stats.unique_validators, 1)

    def test_raw_rows_and_swap(self):
        rows = asyncio.run(self.async_store.get_raw_deposit_rows())
        self.assertEqual(
            rows,
            [
                (20, 1600000240, "1000000000000000000"),
                (20, 1600000240, "2"),
                (21, 1600000252, "3"),
            ],
        )

        asyncio.run(
            self.async_store.replace_materialized_table(
                [MaterializedRow(20, 1600000240, 2, "1000000000000000002")]
            )
        )

        self.assertEqual(
            asyncio.run(self.async_store.query_materialized_by_block(20)).total_deposited,
            "1000000000000000002",
        )

    def test_rebuild_streams_rows_into_the_aggregate(self):
        seen = []

        def aggregate(rows):
            seen.extend(rows)
            return [MaterializedRow(21, 1600000252, 1, "3")]

        count = asyncio.run(self.async_store.rebuild_materialized_table(aggregate))

        self.assertEqual(count, 1)
        self.assertEqual(len(seen), 3)
        self.assertEqual(
            asyncio.run(self.async_store.query_materialized_by_range(0, 100)),
            [MaterializedRow(21, 1600000252, 1, "3")],
        )


if __name__ == "__main__":
    unittest.main()
