"""eigenindexer

A Python library and service indexing EigenPod deployments
and beacon chain deposits from an Ethereum JSON-RPC node
"""

from eigenindexer.core.config import IndexerConfig
from eigenindexer.core.deployment_block import (
    DeploymentBlockConfig,
    DeploymentBlockResolver,
)
from eigenindexer.core.event_store import EventStore, SQLEventStore
from eigenindexer.core.event_store_async import AsyncEventStore
from eigenindexer.core.event_streams import (
    EventStream,
    PodDeployedStream,
    StakedDepositStream,
)
from eigenindexer.core.indexer_scheduler import IndexerScheduler
from eigenindexer.core.indexer_service import IndexerService
from eigenindexer.core.materialized_view import MaterializedViewRefresher
from eigenindexer.core.models import (
    IndexingCursor,
    PodDeployedEvent,
    StakedEthByBlock,
    StakedEthEvent,
)
from eigenindexer.core.range_indexer import RangeIndexer
from eigenindexer.core.rpc_gateway import RpcGateway
from eigenindexer.core.types import (
    DepositStats,
    IndexingStatus,
    MaterializedRow,
    PassResult,
    StreamName,
)
from eigenindexer.utils.log import get_default_logger
from eigenindexer.utils.retries import RetryConfig

__all__ = [
    "IndexerConfig",
    "IndexerService",
    "RpcGateway",
    "RetryConfig",
    "DeploymentBlockConfig",
    "DeploymentBlockResolver",
    "EventStore",
    "SQLEventStore",
    "AsyncEventStore",
    "EventStream",
    "PodDeployedStream",
    "StakedDepositStream",
    "RangeIndexer",
    "IndexerScheduler",
    "MaterializedViewRefresher",
    # Models
    "PodDeployedEvent",
    "StakedEthEvent",
    "IndexingCursor",
    "StakedEthByBlock",
    "StreamName",
    "PassResult",
    "IndexingStatus",
    "MaterializedRow",
    "DepositStats",
    "get_default_logger",
]
