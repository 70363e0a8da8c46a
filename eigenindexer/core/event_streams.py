"""
Event stream definitions.
A stream binds a contract address and an event signature
to the decoding of its logs into storage records.
"""

from typing import Any, Dict, Optional

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address
from web3 import Web3

from eigenindexer.core.deployment_block import DeploymentBlockConfig
from eigenindexer.core.event_store import EventRecord
from eigenindexer.core.models import PodDeployedEvent, StakedEthEvent
from eigenindexer.core.rpc_gateway import RpcGateway
from eigenindexer.core.types import StreamName
from eigenindexer.utils.encoding_utils import (
    bytes_to_hex_str_auto,
    le_bytes_to_int,
    to_bytes_auto,
    topic_to_address,
)
from eigenindexer.utils.error_utils import EventDecodeError, RpcError
from eigenindexer.utils.log import get_default_logger

_LOG = get_default_logger(__name__)

# EigenPodManager on Ethereum mainnet.
DEFAULT_EIGENPOD_MANAGER_ADDRESS = "0x91E677b07F7AF907ec9a428aafA9fc14a0d3A338"
# Beacon chain deposit contract on Ethereum mainnet.
DEFAULT_DEPOSIT_CONTRACT_ADDRESS = "0x00000000219ab540356cbb839cbe05303d7705fa"
DEPOSIT_CONTRACT_DEPLOYMENT_BLOCK = 11052984

POD_DEPLOYED_SIGNATURE = "PodDeployed(address,address)"
DEPOSIT_EVENT_SIGNATURE = "DepositEvent(bytes,bytes,bytes,bytes,bytes)"


def event_topic(signature: str) -> str:
    """
    Compute the topic0 of an event signature.

    :param signature: The canonical event signature.
    :return: The keccak-256 hash as a lower case 0x-prefixed hex string.
    """
    return bytes_to_hex_str_auto(Web3.keccak(text=signature))


def _log_field(log: Any, name: str) -> Any:
    try:
        return log[name]
    except (KeyError, TypeError) as e:
        raise EventDecodeError(f"Log is missing field {name}") from e


class EventStream:
    """
    Base class for an indexed event stream.
    Subclasses define the event and how its logs become storage records.
    """

    name: StreamName
    signature: str
    default_batch_size: int

    def __init__(self, address: str, deployment_config: DeploymentBlockConfig):
        self.address = to_checksum_address(address)
        self.deployment_config = deployment_config
        self.topic0 = event_topic(self.signature)

    def log_filter(self, from_block: int, to_block: int) -> dict:
        """
        Build the eth_getLogs filter for a closed block range.

        :param from_block: First block of the range.
        :param to_block: Last block of the range.
        :return: The filter parameters.
        """
        return {
            "address": self.address,
            "topics": [self.topic0],
            "fromBlock": from_block,
            "toBlock": to_block,
        }

    def log_position(self, log: Any):
        """
        Get the chain position of a log for ordering.

        :param log: The raw log.
        :return: A (block_number, log_index) tuple.
        """
        return int(_log_field(log, "blockNumber")), int(_log_field(log, "logIndex"))

    async def decode(
        self, log: Any, gateway: RpcGateway, block_timestamps: Dict[int, int]
    ) -> EventRecord:
        """
        Decode a raw log into a storage record.

        :param log: The raw log.
        :param gateway: The gateway used for auxiliary lookups.
        :param block_timestamps: A per-batch cache of block timestamps.
        :return: The record.
        """
        raise NotImplementedError()


class PodDeployedStream(EventStream):
    """
    PodDeployed(address indexed eigenPod, address indexed podOwner)
    emitted by the EigenPodManager.
    """

    name = StreamName.POD_DEPLOYED
    signature = POD_DEPLOYED_SIGNATURE
    default_batch_size = 2000

    def __init__(
        self,
        address: str = DEFAULT_EIGENPOD_MANAGER_ADDRESS,
        deployment_config: Optional[DeploymentBlockConfig] = None,
    ):
        if deployment_config is None:
            deployment_config = DeploymentBlockConfig(
                contract_name="EigenPodManager", fallback_block_offset=2000000
            )
        super().__init__(address, deployment_config)

    async def decode(
        self, log: Any, gateway: RpcGateway, block_timestamps: Dict[int, int]
    ) -> PodDeployedEvent:
        topics = _log_field(log, "topics")
        if len(topics) < 3:
            raise EventDecodeError(
                f"PodDeployed log has {len(topics)} topics, expected 3"
            )
        try:
            eigen_pod = topic_to_address(topics[1])
            pod_owner = topic_to_address(topics[2])
        except ValueError as e:
            raise EventDecodeError(f"Malformed PodDeployed topics: {e}") from e

        block_number, log_index = self.log_position(log)
        return PodDeployedEvent(
            eigen_pod=eigen_pod,
            pod_owner=pod_owner,
            block_number=block_number,
            transaction_hash=bytes_to_hex_str_auto(_log_field(log, "transactionHash")),
            log_index=log_index,
        )


class StakedDepositStream(EventStream):
    """
    DepositEvent(bytes pubkey, bytes withdrawal_credentials, bytes amount,
    bytes signature, bytes index) emitted by the beacon deposit contract.
    The stored amount is the wei value of the transaction;
    the block timestamp comes from the block header.
    """

    name = StreamName.STAKED_ETH
    signature = DEPOSIT_EVENT_SIGNATURE
    default_batch_size = 1000

    def __init__(
        self,
        address: str = DEFAULT_DEPOSIT_CONTRACT_ADDRESS,
        deployment_config: Optional[DeploymentBlockConfig] = None,
    ):
        if deployment_config is None:
            deployment_config = DeploymentBlockConfig(
                contract_name="DepositContract",
                known_deployment_block=DEPOSIT_CONTRACT_DEPLOYMENT_BLOCK,
            )
        super().__init__(address, deployment_config)

    @staticmethod
    def decode_data(data) -> tuple:
        """
        Decode the non-indexed fields of a DepositEvent.

        :param data: The log data.
        :return: A (pubkey, withdrawal_credentials, amount, signature, index) tuple of bytes.
        """
        try:
            return tuple(decode(["bytes"] * 5, to_bytes_auto(data)))
        except (DecodingError, ValueError) as e:
            raise EventDecodeError(f"Malformed DepositEvent data: {e}") from e

    @staticmethod
    async def get_block_timestamp(
        block_number: int, gateway: RpcGateway, block_timestamps: Dict[int, int]
    ) -> int:
        """
        Get a block timestamp through the per-batch cache.

        :param block_number: The block number.
        :param gateway: The gateway used on a cache miss.
        :param block_timestamps: The cache.
        :return: The timestamp in seconds since the epoch.
        """
        if block_number not in block_timestamps:
            block = await gateway.get_block(block_number)
            if block is None:
                raise RpcError(f"Block {block_number} not returned by the node")
            block_timestamps[block_number] = int(block["timestamp"])
        return block_timestamps[block_number]

    async def decode(
        self, log: Any, gateway: RpcGateway, block_timestamps: Dict[int, int]
    ) -> StakedEthEvent:
        pubkey, withdrawal_credentials, _, signature, index = self.decode_data(
            _log_field(log, "data")
        )
        block_number, log_index = self.log_position(log)
        transaction_hash = bytes_to_hex_str_auto(_log_field(log, "transactionHash"))

        transaction = await gateway.get_transaction(transaction_hash)
        if transaction is None:
            raise RpcError(f"Transaction {transaction_hash} not returned by the node")
        block_timestamp = await self.get_block_timestamp(
            block_number, gateway, block_timestamps
        )

        _LOG.debug(
            "Deposit of %s wei for %s in block %s",
            transaction["value"],
            bytes_to_hex_str_auto(pubkey),
            block_number,
        )
        return StakedEthEvent(
            pubkey=bytes_to_hex_str_auto(pubkey),
            withdrawal_credentials=bytes_to_hex_str_auto(withdrawal_credentials),
            amount=str(int(transaction["value"])),
            signature=bytes_to_hex_str_auto(signature),
            deposit_index=str(le_bytes_to_int(index)),
            block_number=block_number,
            block_timestamp=block_timestamp,
            transaction_hash=transaction_hash,
            log_index=log_index,
        )
