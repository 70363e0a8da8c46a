"""
The indexer service wires the streams, their schedulers
and the deposit summary refresher around one gateway and one store.
"""

from typing import Dict, Iterable, List, Optional, Union

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from eigenindexer.core.config import IndexerConfig
from eigenindexer.core.deployment_block import DeploymentBlockResolver
from eigenindexer.core.event_store import SQLEventStore
from eigenindexer.core.event_store_async import AsyncEventStore
from eigenindexer.core.event_streams import (
    EventStream,
    PodDeployedStream,
    StakedDepositStream,
)
from eigenindexer.core.indexer_scheduler import DEFAULT_CRON, IndexerScheduler
from eigenindexer.core.materialized_view import (
    DEFAULT_REFRESH_SECONDS,
    MaterializedViewRefresher,
)
from eigenindexer.core.range_indexer import RangeIndexer
from eigenindexer.core.rpc_gateway import RpcGateway
from eigenindexer.core.types import IndexingStatus, StreamName, stream_key
from eigenindexer.utils.log import get_default_logger

_LOG = get_default_logger(__name__)


class IndexerService:
    """
    Composition root of the indexer.
    All components share the gateway, the store and one AsyncIOScheduler.
    """

    # pylint: disable-msg=too-many-arguments
    def __init__(
        self,
        gateway: RpcGateway,
        store: SQLEventStore,
        streams: Optional[Iterable[EventStream]] = None,
        batch_sizes: Optional[Dict[str, int]] = None,
        apscheduler: Optional[AsyncIOScheduler] = None,
    ):
        """
        Initialize the service.

        :param gateway: The chain node gateway.
        :param store: The event store.
        :param streams: The indexed streams.
            Defaults to the mainnet PodDeployed and DepositEvent streams.
        :param batch_sizes: Optional batch sizes by stream name.
        :param apscheduler: The scheduler running periodic jobs.
        """
        if streams is None:
            streams = [PodDeployedStream(), StakedDepositStream()]
        if batch_sizes is None:
            batch_sizes = {}

        self.gateway = gateway
        self.store = store
        self.async_store = AsyncEventStore(store)
        self.apscheduler = apscheduler if apscheduler is not None else AsyncIOScheduler()
        self.resolver = DeploymentBlockResolver(gateway)

        self.schedulers: Dict[str, IndexerScheduler] = {}
        for stream in streams:
            indexer = RangeIndexer(
                stream,
                gateway,
                self.async_store,
                self.resolver,
                batch_size=batch_sizes.get(stream.name.value),
            )
            self.schedulers[stream.name.value] = IndexerScheduler(indexer, self.apscheduler)
        self.refresher = MaterializedViewRefresher(self.async_store, self.apscheduler)

    @staticmethod
    def create_instance(config: IndexerConfig) -> "IndexerService":
        """
        Create a service from the indexer settings.

        :param config: The indexer settings.
        :return: The IndexerService created.
        """
        gateway = RpcGateway.create_instance(
            config.ethereum_rpc_url,
            retry_config=config.retry_config(),
            call_timeout=config.rpc_timeout,
        )
        store = SQLEventStore(config.database_url)
        streams = [
            PodDeployedStream(config.eigenpod_manager_address),
            StakedDepositStream(config.staked_eth_contract_address),
        ]
        batch_sizes = {
            StreamName.POD_DEPLOYED.value: config.pod_batch_size,
            StreamName.STAKED_ETH.value: config.deposit_batch_size,
        }
        return IndexerService(gateway, store, streams=streams, batch_sizes=batch_sizes)

    @staticmethod
    def create_instance_from_env(
        dotenv_path: Union[str, None] = None
    ) -> "IndexerService":
        """
        Create a service from environment variables.

        :param dotenv_path: Optional path to a .env file loaded first.
        :return: The IndexerService created.
        """
        return IndexerService.create_instance(
            IndexerConfig.create_instance_from_env(dotenv_path)
        )

    @property
    def stream_names(self) -> List[str]:
        """The names of the configured streams."""
        return list(self.schedulers.keys())

    def get_scheduler(self, stream: Union[StreamName, str]) -> IndexerScheduler:
        """
        Get the scheduler of a stream.

        :param stream: The stream name.
        :return: The scheduler.
        """
        try:
            return self.schedulers[stream_key(stream)]
        except KeyError as e:
            raise ValueError(f"Unknown stream: {stream}") from e

    async def start(
        self,
        streams: Optional[Iterable[str]] = None,
        cron_expression: str = DEFAULT_CRON,
        refresh_seconds: int = DEFAULT_REFRESH_SECONDS,
    ):
        """
        Start periodic indexing and the deposit summary refresh.
        Must be awaited from the event loop that runs the jobs.

        :param streams: The streams to schedule, all streams by default.
        :param cron_expression: The cron expression of indexing passes.
        :param refresh_seconds: The deposit summary refresh interval.
        """
        await self.gateway.check_connection()
        if not self.apscheduler.running:
            self.apscheduler.start()
        await self.refresher.start(refresh_seconds)
        for name in streams if streams is not None else self.stream_names:
            self.get_scheduler(name).start(cron_expression)
        _LOG.info("Indexer service started")

    def stop(self):
        """
        Stop all periodic jobs.
        Passes in flight finish on their own.
        """
        for scheduler in self.schedulers.values():
            scheduler.stop()
        self.refresher.stop()
        if self.apscheduler.running:
            self.apscheduler.shutdown(wait=False)
        _LOG.info("Indexer service stopped")

    async def statuses(self) -> List[IndexingStatus]:
        """
        Report the status of every stream.

        :return: The statuses in stream order.
        """
        return [await scheduler.status() for scheduler in self.schedulers.values()]

    def close(self):
        """Release the storage connections."""
        self.store.close()
