"""
The RPC gateway module wraps every chain node call made by the indexer
with a per-call timeout and classification-aware retries.
This implementation uses AsyncWeb3 with AsyncHTTPProvider.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, Union

from eth_utils import to_checksum_address
from web3 import AsyncHTTPProvider, AsyncWeb3

from eigenindexer.utils.error_utils import ErrorClassifier, default_error_classifier
from eigenindexer.utils.log import get_default_logger
from eigenindexer.utils.retries import RetryConfig, with_retries

_LOG = get_default_logger(__name__)

# Default bound on a single RPC call in seconds.
DEFAULT_CALL_TIMEOUT = 30.0

BlockIdentifier = Union[int, str]


class RpcGateway:
    """
    Chain node access for the indexer.
    All streams share one gateway, and therefore one rate-limited endpoint.
    There is no global throttle; per-call backoff is the only protection.
    """

    # pylint: disable-msg=too-many-arguments
    def __init__(
        self,
        w3: AsyncWeb3,
        retry_config: Optional[RetryConfig] = None,
        classifier: Optional[ErrorClassifier] = None,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the gateway.

        :param w3: The async Web3 handle.
        :param retry_config: The retry settings.
        :param classifier: The classifier deciding which errors are transient.
            Defaults to the Ethereum JSON-RPC classifier chain.
        :param call_timeout: The timeout of a single call attempt in seconds.
        :param sleep: The coroutine used to wait between attempts.
        """
        self.w3 = w3
        self.retry_config = retry_config if retry_config is not None else RetryConfig()
        self.classifier = (
            classifier if classifier is not None else default_error_classifier()
        )
        self.call_timeout = call_timeout
        self.sleep = sleep

    @staticmethod
    def create_instance(
        node_rpc_url: str,
        retry_config: Optional[RetryConfig] = None,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        classifier: Optional[ErrorClassifier] = None,
    ) -> "RpcGateway":
        """
        Creates a gateway connected to a node over HTTP.

        :param node_rpc_url: Node RPC URL.
        :param retry_config: The retry settings.
        :param call_timeout: The timeout of a single call attempt in seconds.
        :param classifier: The error classifier for the provider.
        :return: The RpcGateway created.
        """
        w3 = AsyncWeb3(
            AsyncHTTPProvider(node_rpc_url, request_kwargs={"timeout": call_timeout})
        )
        return RpcGateway(
            w3,
            retry_config=retry_config,
            classifier=classifier,
            call_timeout=call_timeout,
        )

    async def _call(self, context: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        async def attempt():
            return await asyncio.wait_for(operation(), timeout=self.call_timeout)

        return await with_retries(
            attempt,
            _LOG,
            config=self.retry_config,
            classifier=self.classifier,
            context=context,
            sleep=self.sleep,
        )

    async def check_connection(self):
        """
        Verify that the node answers.
        Raises ConnectionError if it does not.
        """
        connected = await self.w3.is_connected()
        if not connected:
            raise ConnectionError("is_connected() returned False for the RPC node")

    async def get_code(
        self, address: str, block_identifier: BlockIdentifier = "latest"
    ) -> bytes:
        """
        Get the bytecode of an address at a block.

        :param address: The contract address.
        :param block_identifier: The block number or tag.
        :return: The bytecode, empty if no contract exists there.
        """
        checksum_address = to_checksum_address(address)
        return await self._call(
            f"get_code({checksum_address}, {block_identifier})",
            lambda: self.w3.eth.get_code(checksum_address, block_identifier),
        )

    async def get_block_number(self) -> int:
        """
        Get the current chain head.

        :return: The latest block number.
        """
        block_number = await self._call(
            "get_block_number()", lambda: self.w3.eth.block_number
        )
        return int(block_number)

    async def get_block(self, block_identifier: BlockIdentifier) -> Any:
        """
        Get a block without its transactions.

        :param block_identifier: The block number or tag.
        :return: The block data.
        """
        return await self._call(
            f"get_block({block_identifier})",
            lambda: self.w3.eth.get_block(block_identifier),
        )

    async def get_transaction(self, transaction_hash: str) -> Any:
        """
        Get a transaction by hash.

        :param transaction_hash: The transaction hash.
        :return: The transaction data.
        """
        return await self._call(
            f"get_transaction({transaction_hash})",
            lambda: self.w3.eth.get_transaction(transaction_hash),
        )

    async def get_logs(self, filter_params: dict) -> List[Any]:
        """
        Get the logs matching a filter.

        :param filter_params: The eth_getLogs filter.
        :return: The list of logs.
        """
        context = (
            f"get_logs({filter_params.get('fromBlock')}-{filter_params.get('toBlock')})"
        )
        logs = await self._call(context, lambda: self.w3.eth.get_logs(filter_params))
        return list(logs)
