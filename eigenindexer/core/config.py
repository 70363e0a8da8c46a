"""
Indexer configuration loaded from the environment.
"""

import os
import pprint
from dataclasses import asdict, dataclass
from typing import Union

from dotenv import load_dotenv

from eigenindexer.core.event_streams import (
    DEFAULT_DEPOSIT_CONTRACT_ADDRESS,
    DEFAULT_EIGENPOD_MANAGER_ADDRESS,
)
from eigenindexer.core.indexer_scheduler import DEFAULT_CRON
from eigenindexer.core.materialized_view import DEFAULT_REFRESH_SECONDS
from eigenindexer.core.rpc_gateway import DEFAULT_CALL_TIMEOUT
from eigenindexer.utils.error_utils import ConfigurationError, check_for_missing_env_vars
from eigenindexer.utils.log import get_default_logger
from eigenindexer.utils.retries import RetryConfig

_LOG = get_default_logger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///indexer.db"


def _parse_int(name: str, value: str, minimum: int = 0) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e
    if parsed < minimum:
        raise ConfigurationError(f"{name} must be at least {minimum}, got {parsed}")
    return parsed


def _parse_float(name: str, value: str) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e
    if parsed <= 0:
        raise ConfigurationError(f"{name} must be positive, got {parsed}")
    return parsed


@dataclass(frozen=True)
class IndexerConfig:
    """
    Settings of an indexer process.
    Only this class reads the environment;
    components receive explicit values.
    """

    ethereum_rpc_url: str
    database_url: str = DEFAULT_DATABASE_URL
    eigenpod_manager_address: str = DEFAULT_EIGENPOD_MANAGER_ADDRESS
    staked_eth_contract_address: str = DEFAULT_DEPOSIT_CONTRACT_ADDRESS
    indexer_cron: str = DEFAULT_CRON
    max_retries: int = 10
    retry_delay_base: float = 2.0
    retry_max_delay: float = 60.0
    rpc_timeout: float = DEFAULT_CALL_TIMEOUT
    pod_batch_size: int = 2000
    deposit_batch_size: int = 1000
    materialized_refresh_seconds: int = DEFAULT_REFRESH_SECONDS

    def retry_config(self) -> RetryConfig:
        """
        Build the retry settings for the RPC gateway.

        :return: The retry settings.
        """
        return RetryConfig(
            max_retries=self.max_retries,
            base_delay=self.retry_delay_base,
            max_delay=self.retry_max_delay,
        )

    @staticmethod
    def get_init_args_from_env(dotenv_path: Union[str, None] = None) -> dict:
        """
        Read the settings from environment variables.

        :param dotenv_path: Optional path to a .env file loaded first.
        :return: The keyword arguments of IndexerConfig.
        """
        # Load .env file if it exists.
        if dotenv_path:
            load_dotenv(dotenv_path, verbose=True, override=True)
        required_args = {
            "ethereum_rpc_url": os.getenv("ETHEREUM_RPC_URL"),
        }
        # Check for missing environment variables since these are unrecoverable.
        check_for_missing_env_vars(required_args)

        init_args = {
            **required_args,
            "database_url": os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            "eigenpod_manager_address": os.getenv(
                "EIGENPOD_MANAGER_ADDRESS", DEFAULT_EIGENPOD_MANAGER_ADDRESS
            ),
            "staked_eth_contract_address": os.getenv(
                "STAKED_ETH_CONTRACT_ADDRESS", DEFAULT_DEPOSIT_CONTRACT_ADDRESS
            ),
            "indexer_cron": os.getenv("INDEXER_CRON", DEFAULT_CRON),
            "max_retries": _parse_int(
                "MAX_RETRIES", os.getenv("MAX_RETRIES", "10"), minimum=1
            ),
            "retry_delay_base": _parse_float(
                "RETRY_DELAY_BASE", os.getenv("RETRY_DELAY_BASE", "2")
            ),
            "retry_max_delay": _parse_float(
                "RETRY_MAX_DELAY", os.getenv("RETRY_MAX_DELAY", "60")
            ),
            "rpc_timeout": _parse_float(
                "RPC_TIMEOUT", os.getenv("RPC_TIMEOUT", str(DEFAULT_CALL_TIMEOUT))
            ),
            "pod_batch_size": _parse_int(
                "POD_BATCH_SIZE", os.getenv("POD_BATCH_SIZE", "2000"), minimum=1
            ),
            "deposit_batch_size": _parse_int(
                "DEPOSIT_BATCH_SIZE", os.getenv("DEPOSIT_BATCH_SIZE", "1000"), minimum=1
            ),
            "materialized_refresh_seconds": _parse_int(
                "MATERIALIZED_REFRESH_SECONDS",
                os.getenv("MATERIALIZED_REFRESH_SECONDS", str(DEFAULT_REFRESH_SECONDS)),
                minimum=1,
            ),
        }
        return init_args

    @staticmethod
    def create_instance_from_env(dotenv_path: Union[str, None] = None) -> "IndexerConfig":
        """
        Create the configuration from environment variables.

        :param dotenv_path: Optional path to a .env file loaded first.
        :return: The IndexerConfig created.
        """
        config = IndexerConfig(**IndexerConfig.get_init_args_from_env(dotenv_path))
        _LOG.debug(
            "IndexerConfig.create_instance_from_env(): config =\n%s",
            pprint.pformat(config.redacted()),
        )
        return config

    def redacted(self) -> dict:
        """
        Get the settings with the RPC URL masked.
        Provider URLs commonly embed API keys.

        :return: The settings as a dict.
        """
        values = asdict(self)
        url = values["ethereum_rpc_url"]
        scheme, sep, _ = url.partition("://")
        values["ethereum_rpc_url"] = f"{scheme}{sep}***" if sep else "***"
        return values
