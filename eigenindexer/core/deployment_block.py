"""
Discovery of the block at which a contract was deployed.
Indexing of a stream's history starts at this block.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from eigenindexer.core.rpc_gateway import RpcGateway
from eigenindexer.utils.error_utils import ConfigurationError
from eigenindexer.utils.log import get_default_logger

_LOG = get_default_logger(__name__)


@dataclass(frozen=True)
class DeploymentBlockConfig:
    """
    Static deployment settings of a contract.

    Attributes:
        contract_name (str): A human-readable name used in log messages.
        known_deployment_block (int | None): A known-good deployment block, if any.
        fallback_block_offset (int | None): The number of blocks below the head
            to start from when no deployment block can be found.
    """

    contract_name: str
    known_deployment_block: Optional[int] = None
    fallback_block_offset: Optional[int] = None


def has_code(code) -> bool:
    """
    Check whether an eth_getCode result holds bytecode.

    :param code: The result as bytes, HexBytes or a hex string.
    :return: True if the contract exists.
    """
    if code is None:
        return False
    if isinstance(code, (bytes, bytearray)):
        return len(code) > 0
    return str(code).lower() not in ("", "0x")


class DeploymentBlockResolver:
    """
    Finds the lowest block at which a contract's bytecode is present.
    A verified known block is the cheap path; a binary search over
    [0, head] is the fallback.
    Results are cached per contract address for the life of the resolver.
    """

    def __init__(self, gateway: RpcGateway):
        self.gateway = gateway
        self._cache: Dict[str, int] = {}

    async def _code_exists(self, address: str, block_number: int) -> bool:
        return has_code(await self.gateway.get_code(address, block_number))

    async def _verify_known_block(
        self, address: str, config: DeploymentBlockConfig
    ) -> bool:
        try:
            if await self._code_exists(address, config.known_deployment_block):
                _LOG.info(
                    "%s found at known block %s",
                    config.contract_name,
                    config.known_deployment_block,
                )
                return True
            _LOG.warning(
                "%s has no code at known block %s, searching",
                config.contract_name,
                config.known_deployment_block,
            )
        except Exception as e:  # pylint: disable=broad-except
            _LOG.warning(
                "Could not verify known deployment block for %s: %s",
                config.contract_name,
                e,
            )
        return False

    async def binary_search(self, address: str, head: int) -> Optional[int]:
        """
        Search [0, head] for the first block with bytecode.
        Probes that fail are treated as blocks without code,
        which pruned nodes return for old state.

        :param address: The contract address.
        :param head: The highest block to consider.
        :return: The deployment block or None if no block in range has code.
        """
        low = 0
        high = head
        found = None
        while low <= high:
            mid = (low + high) // 2
            try:
                present = await self._code_exists(address, mid)
            except Exception as e:  # pylint: disable=broad-except
                _LOG.warning("Error checking block %s for %s: %s", mid, address, e)
                present = False
            if present:
                found = mid
                high = mid - 1
            else:
                low = mid + 1
        return found

    async def resolve(self, address: str, config: DeploymentBlockConfig) -> int:
        """
        Resolve the deployment block of a contract.

        :param address: The contract address.
        :param config: The deployment settings.
        :return: The deployment block, or the fallback block if none was found.
        """
        cache_key = address.lower()
        if cache_key in self._cache:
            return self._cache[cache_key]

        _LOG.info("Finding %s deployment block...", config.contract_name)

        if config.known_deployment_block is not None and await self._verify_known_block(
            address, config
        ):
            self._cache[cache_key] = config.known_deployment_block
            return config.known_deployment_block

        head = await self.gateway.get_block_number()
        deployment_block = await self.binary_search(address, head)
        if deployment_block is None:
            if config.fallback_block_offset is None:
                raise ConfigurationError(
                    f"Could not find {config.contract_name} deployment block "
                    f"at {address} and no fallback offset is configured"
                )
            fallback_block = max(0, head - config.fallback_block_offset)
            _LOG.warning(
                "No code found for %s at %s, using fallback deployment block %s",
                config.contract_name,
                address,
                fallback_block,
            )
            # The fallback moves with the head, so it is not cached.
            return fallback_block

        _LOG.info("%s deployment block: %s", config.contract_name, deployment_block)
        self._cache[cache_key] = deployment_block
        return deployment_block
