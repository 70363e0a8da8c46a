"""
eigenindexer test utils
"""

import logging
import os
import tempfile
from collections import Counter
from typing import Dict, List, Optional, Set

from eth_abi import encode
from eth_utils import to_checksum_address
from hexbytes import HexBytes

from eigenindexer.core.event_store import SQLEventStore
from eigenindexer.core.event_streams import (
    DEPOSIT_EVENT_SIGNATURE,
    POD_DEPLOYED_SIGNATURE,
    event_topic,
)
from eigenindexer.utils.log import get_default_logger

_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)

POD_MANAGER_ADDRESS = to_checksum_address("0x91E677b07F7AF907ec9a428aafA9fc14a0d3A338")
DEPOSIT_CONTRACT_ADDRESS = to_checksum_address("0x00000000219ab540356cbb839cbe05303d7705fa")

# 32 ETH in wei.
FULL_DEPOSIT_WEI = 32 * 10**18

# Genesis time of the fake chain and its block time.
_GENESIS_TIMESTAMP = 1600000000
_BLOCK_TIME = 12


def make_address(n: int) -> str:
    """
    Make a deterministic checksum address.

    :param n: A seed number.
    :return: The address.
    """
    return to_checksum_address(n.to_bytes(20, "big"))


def make_tx_hash(block_number: int, log_index: int) -> HexBytes:
    """
    Make a deterministic transaction hash for a log position.

    :param block_number: The block number.
    :param log_index: The log index.
    :return: The 32-byte hash.
    """
    return HexBytes(block_number.to_bytes(16, "big") + log_index.to_bytes(16, "big"))


def address_topic(address: str) -> HexBytes:
    """
    Encode an address as an indexed event topic.

    :param address: The address.
    :return: The 32-byte topic.
    """
    return HexBytes(bytes(12) + HexBytes(address))


def make_pod_log(
    block_number: int,
    log_index: int,
    eigen_pod: str,
    pod_owner: str,
    transaction_hash: Optional[HexBytes] = None,
) -> dict:
    """
    Make a PodDeployed log as returned by eth_getLogs.
    """
    return {
        "address": POD_MANAGER_ADDRESS,
        "topics": [
            HexBytes(event_topic(POD_DEPLOYED_SIGNATURE)),
            address_topic(eigen_pod),
            address_topic(pod_owner),
        ],
        "data": HexBytes(b""),
        "blockNumber": block_number,
        "logIndex": log_index,
        "transactionHash": transaction_hash
        if transaction_hash is not None
        else make_tx_hash(block_number, log_index),
    }


# pylint: disable-msg=too-many-arguments
def make_deposit_log(
    block_number: int,
    log_index: int,
    pubkey: bytes,
    withdrawal_credentials: bytes,
    amount_gwei: int = 32 * 10**9,
    deposit_index: int = 0,
    transaction_hash: Optional[HexBytes] = None,
) -> dict:
    """
    Make a DepositEvent log as returned by eth_getLogs.
    Amount and index are little-endian uint64 as emitted by the deposit contract.
    """
    data = encode(
        ["bytes", "bytes", "bytes", "bytes", "bytes"],
        [
            pubkey,
            withdrawal_credentials,
            amount_gwei.to_bytes(8, "little"),
            b"\x05" * 96,
            deposit_index.to_bytes(8, "little"),
        ],
    )
    return {
        "address": DEPOSIT_CONTRACT_ADDRESS,
        "topics": [HexBytes(event_topic(DEPOSIT_EVENT_SIGNATURE))],
        "data": HexBytes(data),
        "blockNumber": block_number,
        "logIndex": log_index,
        "transactionHash": transaction_hash
        if transaction_hash is not None
        else make_tx_hash(block_number, log_index),
    }


def _hash_key(transaction_hash) -> str:
    return bytes(HexBytes(transaction_hash)).hex()


class FakeChain:
    """
    A scripted in-memory chain with the RpcGateway interface.
    Counts calls and fails get_logs for chosen sub-ranges on request.
    """

    def __init__(self, head: int = 0):
        self.head = head
        self.deployments: Dict[str, int] = {}
        self.logs: List[dict] = []
        self.transactions: Dict[str, dict] = {}
        self.calls = Counter()
        self.get_logs_ranges = []
        # fromBlock values of get_logs calls that raise.
        self.failing_from_blocks: Set[int] = set()
        # Blocks at which get_code raises.
        self.failing_code_blocks: Set[int] = set()

    def deploy(self, address: str, block_number: int):
        """Deploy a contract at a block."""
        self.deployments[address.lower()] = block_number

    def add_log(self, log: dict, value: Optional[int] = None):
        """
        Add a log. A value creates the log's transaction.
        """
        self.logs.append(log)
        if value is not None:
            self.transactions[_hash_key(log["transactionHash"])] = {
                "hash": log["transactionHash"],
                "value": value,
            }

    @staticmethod
    def block_timestamp(block_number: int) -> int:
        """The timestamp of a fake block."""
        return _GENESIS_TIMESTAMP + block_number * _BLOCK_TIME

    async def get_code(self, address: str, block_identifier="latest") -> bytes:
        self.calls["get_code"] += 1
        block_number = self.head if block_identifier == "latest" else block_identifier
        if block_number in self.failing_code_blocks:
            raise RuntimeError(f"missing trie node at block {block_number}")
        deployment_block = self.deployments.get(address.lower())
        if deployment_block is None or block_number < deployment_block:
            return HexBytes(b"")
        return HexBytes(b"\x60\x80\x60\x40")

    async def get_block_number(self) -> int:
        self.calls["get_block_number"] += 1
        return self.head

    async def get_block(self, block_identifier) -> dict:
        self.calls["get_block"] += 1
        return {"number": block_identifier, "timestamp": self.block_timestamp(block_identifier)}

    async def get_transaction(self, transaction_hash: str) -> Optional[dict]:
        self.calls["get_transaction"] += 1
        return self.transactions.get(_hash_key(transaction_hash))

    async def get_logs(self, filter_params: dict) -> List[dict]:
        self.calls["get_logs"] += 1
        from_block = filter_params["fromBlock"]
        to_block = filter_params["toBlock"]
        self.get_logs_ranges.append((from_block, to_block))
        if from_block in self.failing_from_blocks:
            raise RuntimeError(f"get_logs failed for {from_block}-{to_block}")
        topic0 = HexBytes(filter_params["topics"][0])
        matches = [
            log
            for log in self.logs
            if log["address"].lower() == filter_params["address"].lower()
            and HexBytes(log["topics"][0]) == topic0
            and from_block <= log["blockNumber"] <= to_block
        ]
        # Nodes do not guarantee order; return newest first to exercise sorting.
        return list(reversed(matches))


class TempStoreMixin:
    """
    Creates a SQLite event store in a temporary directory for each test.
    """

    def setUp(self):
        """
        Set up the tests.
        """
        # pylint: disable=consider-using-with
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.db_url = "sqlite:///" + os.path.join(self.tmp_dir.name, "indexer.db")
        self.store = SQLEventStore(self.db_url)

    def tearDown(self):
        """
        Clean up the tests.
        """
        self.store.close()
        self.tmp_dir.cleanup()
