"""
Tests of the range indexer
"""

import asyncio
import unittest

from eigenindexer.core.deployment_block import DeploymentBlockConfig, DeploymentBlockResolver
from eigenindexer.core.event_store_async import AsyncEventStore
from eigenindexer.core.event_streams import PodDeployedStream, StakedDepositStream
from eigenindexer.core.range_indexer import RangeIndexer, split_range
from eigenindexer.core.types import StreamName
from eigenindexer.utils.error_utils import RpcError
from eigenindexer.tests.utils import (
    DEPOSIT_CONTRACT_ADDRESS,
    FULL_DEPOSIT_WEI,
    POD_MANAGER_ADDRESS,
    FakeChain,
    TempStoreMixin,
    make_address,
    make_deposit_log,
    make_pod_log,
)

_POD = StreamName.POD_DEPLOYED.value
_DEPOSIT = StreamName.STAKED_ETH.value

# (block_number, log_index) of the scripted PodDeployed logs.
_POD_LOG_POSITIONS = [(100, 0), (105, 2), (105, 1), (117, 0), (130, 4), (135, 0), (135, 1)]


class TestSplitRange(unittest.TestCase):
    """
    Test sub-range splitting.
    """

    def test_split(self):
        self.assertEqual(
            list(split_range(0, 25, 10)), [(0, 9), (10, 19), (20, 25)]
        )
        self.assertEqual(list(split_range(5, 5, 10)), [(5, 5)])
        self.assertEqual(list(split_range(6, 5, 10)), [])

    def test_invalid_batch_size(self):
        with self.assertRaises(ValueError):
            list(split_range(0, 10, 0))


class TestRangeIndexer(TempStoreMixin, unittest.TestCase):
    """
    Test indexing passes and backfills of the PodDeployed stream.
    """

    def setUp(self):
        super().setUp()
        self.chain = FakeChain(head=135)
        self.chain.deploy(POD_MANAGER_ADDRESS, 100)
        for i, (block_number, log_index) in enumerate(_POD_LOG_POSITIONS):
            self.chain.add_log(
                make_pod_log(block_number, log_index, make_address(0x1000 + i), make_address(7))
            )
        self.indexer = RangeIndexer(
            PodDeployedStream(),
            self.chain,
            AsyncEventStore(self.store),
            DeploymentBlockResolver(self.chain),
            batch_size=10,
        )

    def _rows(self):
        return [
            (e.block_number, e.log_index)
            for e in self.store.get_events_in_range(_POD, 0, 10**9)
        ]

    def _cursor(self) -> int:
        return self.store.get_last_indexed_block(_POD)

    def test_first_pass_starts_at_deployment_block(self):
        result = asyncio.run(self.indexer.index_new_blocks())

        self.assertEqual((result.start_block, result.end_block), (100, 135))
        self.assertEqual(result.batches, 4)
        self.assertEqual(result.events, len(_POD_LOG_POSITIONS))
        self.assertEqual(
            self.chain.get_logs_ranges, [(100, 109), (110, 119), (120, 129), (130, 135)]
        )
        self.assertEqual(self._rows(), sorted(_POD_LOG_POSITIONS))
        self.assertEqual(self._cursor(), 135)

    def test_pass_resumes_after_cursor(self):
        asyncio.run(self.indexer.index_new_blocks())
        self.chain.head = 142
        self.chain.add_log(make_pod_log(141, 0, make_address(0x2000), make_address(8)))
        self.chain.get_logs_ranges.clear()

        result = asyncio.run(self.indexer.index_new_blocks())

        self.assertEqual((result.start_block, result.end_block), (136, 142))
        self.assertEqual(result.events, 1)
        self.assertEqual(self.chain.get_logs_ranges, [(136, 142)])
        self.assertEqual(self._cursor(), 142)

    def test_repeated_passes_are_idempotent(self):
        asyncio.run(self.indexer.index_new_blocks())
        rows = self._rows()

        result = asyncio.run(self.indexer.index_new_blocks())
        self.assertTrue(result.up_to_date)
        self.assertEqual(result.events, 0)

        result = asyncio.run(self.indexer.backfill(0, 135))
        self.assertEqual(result.events, 0)
        self.assertEqual(self._rows(), rows)
        self.assertEqual(self._cursor(), 135)

    def test_crash_recovery(self):
        self.chain.failing_from_blocks.add(120)

        with self.assertRaises(RuntimeError):
            asyncio.run(self.indexer.index_new_blocks())

        # Sub-ranges up to 119 are committed, nothing after.
        self.assertEqual(self._cursor(), 119)
        self.assertEqual(self._rows(), [p for p in sorted(_POD_LOG_POSITIONS) if p[0] <= 119])

        self.chain.failing_from_blocks.clear()
        self.chain.get_logs_ranges.clear()
        result = asyncio.run(self.indexer.index_new_blocks())

        self.assertEqual(self.chain.get_logs_ranges, [(120, 129), (130, 135)])
        self.assertEqual(result.events, 3)
        self.assertEqual(self._rows(), sorted(_POD_LOG_POSITIONS))
        self.assertEqual(self._cursor(), 135)

    def test_backfill_from_deployment_block(self):
        result = asyncio.run(self.indexer.backfill(0, 119))

        self.assertEqual((result.start_block, result.end_block), (100, 119))
        self.assertEqual(self._cursor(), 119)

    def test_backfill_from_explicit_deployment_block(self):
        asyncio.run(self.indexer.backfill(100, 119))
        self.assertEqual(self._cursor(), 119)
        self.chain.get_logs_ranges.clear()

        result = asyncio.run(self.indexer.index_new_blocks())

        self.assertEqual(result.start_block, 120)
        self.assertEqual(self.chain.get_logs_ranges, [(120, 129), (130, 135)])
        self.assertEqual(self._cursor(), 135)

    def test_backfill_before_deployment_block_extends_cursor(self):
        asyncio.run(self.indexer.backfill(50, 112))
        self.assertEqual(self._cursor(), 112)

    def test_disjoint_backfill_keeps_cursor(self):
        asyncio.run(self.indexer.backfill(125, 135))
        self.assertEqual(self._cursor(), 0)

        result = asyncio.run(self.indexer.index_new_blocks())

        self.assertEqual(result.start_block, 100)
        self.assertEqual(result.events, 4)
        self.assertEqual(self._rows(), sorted(_POD_LOG_POSITIONS))
        self.assertEqual(self._cursor(), 135)

    def test_backfill_never_moves_cursor_backward(self):
        asyncio.run(self.indexer.index_new_blocks())

        asyncio.run(self.indexer.backfill(100, 110))

        self.assertEqual(self._cursor(), 135)

    def test_contiguous_backfill_extends_cursor(self):
        asyncio.run(self.indexer.backfill(0, 115))
        self.chain.head = 200

        asyncio.run(self.indexer.backfill(110, 150))

        self.assertEqual(self._cursor(), 150)

    def test_cursor_is_monotonic(self):
        cursors = [self._cursor()]
        operations = [
            lambda: self.indexer.backfill(120, 130),
            lambda: self.indexer.backfill(0, 112),
            self.indexer.index_new_blocks,
            lambda: self.indexer.backfill(100, 105),
            self.indexer.index_new_blocks,
        ]
        for operation in operations:
            asyncio.run(operation())
            cursors.append(self._cursor())

        self.assertEqual(cursors, sorted(cursors))
        self.assertEqual(cursors[-1], 135)

    def test_head_behind_cursor(self):
        asyncio.run(self.indexer.index_new_blocks())
        self.chain.head = 130

        result = asyncio.run(self.indexer.index_new_blocks())

        self.assertTrue(result.up_to_date)
        self.assertEqual(self._cursor(), 135)

    def test_negative_backfill_range(self):
        with self.assertRaises(ValueError):
            asyncio.run(self.indexer.backfill(-1, 10))


class TestRangeIndexerDeposits(TempStoreMixin, unittest.TestCase):
    """
    Test indexing of the DepositEvent stream with auxiliary lookups.
    """

    def setUp(self):
        super().setUp()
        self.chain = FakeChain(head=120)
        self.chain.deploy(DEPOSIT_CONTRACT_ADDRESS, 100)
        stream = StakedDepositStream(
            deployment_config=DeploymentBlockConfig(
                "DepositContract", known_deployment_block=100
            )
        )
        self.indexer = RangeIndexer(
            stream,
            self.chain,
            AsyncEventStore(self.store),
            DeploymentBlockResolver(self.chain),
            batch_size=10,
        )
        self.withdrawal_credentials = b"\x01" + bytes(11) + b"\xbb" * 20

    def test_partial_batch_failure(self):
        logs = [
            make_deposit_log(101, 0, b"\x01" * 48, self.withdrawal_credentials),
            make_deposit_log(112, 0, b"\x02" * 48, self.withdrawal_credentials),
            make_deposit_log(113, 0, b"\x03" * 48, self.withdrawal_credentials),
        ]
        self.chain.add_log(logs[0], value=FULL_DEPOSIT_WEI)
        self.chain.add_log(logs[1], value=FULL_DEPOSIT_WEI)
        # The transaction of the last log is unknown to the node.
        self.chain.add_log(logs[2])

        with self.assertRaises(RpcError):
            asyncio.run(self.indexer.index_new_blocks())
        self.assertEqual(self.store.get_last_indexed_block(_DEPOSIT), 109)
        self.assertEqual(self.store.count_events(_DEPOSIT), 1)

        self.chain.add_log(logs[2], value=FULL_DEPOSIT_WEI)
        self.chain.logs.pop()
        result = asyncio.run(self.indexer.index_new_blocks())

        self.assertEqual(result.events, 2)
        self.assertEqual(self.store.get_last_indexed_block(_DEPOSIT), 120)
        deposits = self.store.get_events_in_range(_DEPOSIT, 0, 200)
        self.assertEqual([d.block_number for d in deposits], [101, 112, 113])
        self.assertEqual({d.amount for d in deposits}, {"32000000000000000000"})
        self.assertEqual(
            [d.block_timestamp for d in deposits],
            [FakeChain.block_timestamp(b) for b in (101, 112, 113)],
        )


if __name__ == "__main__":
    unittest.main()
