"""
Command line interface of the indexer.
"""

import argparse
import asyncio
import json
import signal
import sys
from dataclasses import asdict
from typing import List, Optional, Sequence

import pandas as pd

from eigenindexer.core.config import IndexerConfig
from eigenindexer.core.event_store import DEFAULT_PAGE_SIZE
from eigenindexer.core.indexer_service import IndexerService
from eigenindexer.core.types import StreamName
from eigenindexer.utils.log import get_default_logger

_LOG = get_default_logger(__name__)

STREAM_CHOICES = {
    "pod": StreamName.POD_DEPLOYED,
    "deposit": StreamName.STAKED_ETH,
}

# Interval of the status log while the indexer runs.
STATUS_LOG_SECONDS = 60


def _selected_streams(choice: str) -> List[str]:
    if choice == "all":
        return [stream.value for stream in STREAM_CHOICES.values()]
    return [STREAM_CHOICES[choice].value]


def _non_negative_int(value: str) -> int:
    parsed = int(value)
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {value}")
    return parsed


def _positive_int(value: str) -> int:
    parsed = int(value)
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value}")
    return parsed


def _add_list_parser(queries):
    listing = queries.add_parser("list", help="List events, most recent first")
    listing.add_argument("--limit", type=_positive_int, default=DEFAULT_PAGE_SIZE)
    listing.add_argument("--offset", type=_non_negative_int, default=0)


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argument parser.

    :return: The parser.
    """
    parser = argparse.ArgumentParser(
        prog="eigenindexer",
        description="Index EigenPod deployments and beacon chain deposits",
    )
    parser.add_argument(
        "--env-file", default=None, help="Path to a .env file with the settings"
    )
    parser.add_argument(
        "--json", action="store_true", help="Print query results as JSON"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    stream_kwargs = {
        "choices": ["pod", "deposit", "all"],
        "default": "all",
        "help": "Stream to operate on (default: all)",
    }
    start = commands.add_parser("start", help="Index continuously until interrupted")
    start.add_argument("--stream", **stream_kwargs)
    run_once = commands.add_parser("run-once", help="Run one indexing pass")
    run_once.add_argument("--stream", **stream_kwargs)
    status = commands.add_parser("status", help="Show indexing status")
    status.add_argument("--stream", **stream_kwargs)
    deployment = commands.add_parser(
        "deployment-block", help="Show the resolved deployment block"
    )
    deployment.add_argument("--stream", **stream_kwargs)

    backfill = commands.add_parser("backfill", help="Index an explicit block range")
    backfill.add_argument("stream", choices=list(STREAM_CHOICES.keys()))
    backfill.add_argument(
        "start_block", type=_non_negative_int, help="First block, 0 for the deployment block"
    )
    backfill.add_argument("end_block", type=_non_negative_int, help="Last block")

    commands.add_parser("refresh-analytics", help="Rebuild the per-block deposit summary")

    query = commands.add_parser("query", help="Query indexed events")
    query_streams = query.add_subparsers(dest="query_stream", required=True)

    pod = query_streams.add_parser("pod", help="Query PodDeployed events")
    pod_queries = pod.add_subparsers(dest="query", required=True)
    _add_list_parser(pod_queries)
    pod_queries.add_parser("by-eigenpod").add_argument("address")
    pod_queries.add_parser("by-owner").add_argument("address")
    pod_range = pod_queries.add_parser("by-range")
    pod_range.add_argument("start_block", type=_non_negative_int)
    pod_range.add_argument("end_block", type=_non_negative_int)

    deposit = query_streams.add_parser("deposit", help="Query deposit events")
    deposit_queries = deposit.add_subparsers(dest="query", required=True)
    _add_list_parser(deposit_queries)
    deposit_queries.add_parser("by-pubkey").add_argument("pubkey")
    deposit_queries.add_parser("by-withdrawal").add_argument("withdrawal_credentials")
    deposit_range = deposit_queries.add_parser("by-range")
    deposit_range.add_argument("start_block", type=_non_negative_int)
    deposit_range.add_argument("end_block", type=_non_negative_int)
    deposit_queries.add_parser("by-block").add_argument(
        "block_number", type=_non_negative_int
    )
    deposit_queries.add_parser("stats")
    deposit_queries.add_parser("summary", help="Per-block deposit summary").add_argument(
        "block_number", type=_non_negative_int
    )
    return parser


def format_records(records: Sequence[dict], as_json: bool = False) -> str:
    """
    Render query results for the terminal.

    :param records: The result rows as dicts.
    :param as_json: True to render JSON instead of a table.
    :return: The rendered text.
    """
    if as_json:
        return json.dumps(list(records), indent=2)
    if len(records) == 0:
        return "No results"
    df = pd.DataFrame(list(records))
    if "block_timestamp" in df.columns:
        df["block_time"] = pd.to_datetime(df["block_timestamp"], unit="s", utc=True)
    return df.to_string(index=False)


async def _log_statuses(service: IndexerService, streams: Sequence[str]):
    for name in streams:
        status = await service.get_scheduler(name).status()
        _LOG.info(
            "%s: last indexed block %s, head %s, %s blocks behind, %s events, running=%s",
            status.stream,
            status.last_indexed_block,
            status.current_block,
            status.blocks_behind,
            status.total_events,
            status.is_running,
        )


async def _run_forever(service: IndexerService, args, streams: Sequence[str]):
    config = args.config
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Signal handlers are unavailable on some platforms.
            _LOG.debug("Cannot install handler for %s", sig)

    await service.start(
        streams,
        cron_expression=config.indexer_cron,
        refresh_seconds=config.materialized_refresh_seconds,
    )
    try:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=STATUS_LOG_SECONDS)
            except asyncio.TimeoutError:
                await _log_statuses(service, streams)
    finally:
        _LOG.info("Shutting down")
        service.stop()


async def _query(service: IndexerService, args) -> str:
    store = service.async_store
    if args.query == "list":
        events = await store.list_events(
            STREAM_CHOICES[args.query_stream].value, args.limit, args.offset
        )
        return format_records([event.model_dump() for event in events], args.json)

    if args.query_stream == "pod":
        if args.query == "by-eigenpod":
            events = await store.get_pod_events_by_eigen_pod(args.address)
        elif args.query == "by-owner":
            events = await store.get_pod_events_by_owner(args.address)
        else:
            events = await store.get_events_in_range(
                StreamName.POD_DEPLOYED.value, args.start_block, args.end_block
            )
        return format_records([event.model_dump() for event in events], args.json)

    if args.query == "stats":
        stats = await store.get_deposit_stats()
        return format_records([asdict(stats)], args.json)
    if args.query == "summary":
        row = await service.refresher.get_by_block(args.block_number)
        return format_records([asdict(row)] if row is not None else [], args.json)
    if args.query == "by-pubkey":
        events = await store.get_deposits_by_pubkey(args.pubkey)
    elif args.query == "by-withdrawal":
        events = await store.get_deposits_by_withdrawal_credentials(
            args.withdrawal_credentials
        )
    elif args.query == "by-block":
        events = await store.get_deposits_by_block(args.block_number)
    else:
        events = await store.get_events_in_range(
            StreamName.STAKED_ETH.value, args.start_block, args.end_block
        )
    return format_records([event.model_dump() for event in events], args.json)


async def run_command(service: IndexerService, args) -> int:
    """
    Execute a parsed command.

    :param service: The indexer service.
    :param args: The parsed arguments.
    :return: The process exit status.
    """
    if args.command == "start":
        await _run_forever(service, args, _selected_streams(args.stream))
    elif args.command == "run-once":
        for name in _selected_streams(args.stream):
            result = await service.get_scheduler(name).run_once()
            _LOG.info(
                "%s pass: blocks %s-%s, %s batches, %s new events",
                name,
                result.start_block,
                result.end_block,
                result.batches,
                result.events,
            )
    elif args.command == "backfill":
        result = await service.get_scheduler(STREAM_CHOICES[args.stream]).backfill(
            args.start_block, args.end_block
        )
        _LOG.info(
            "Backfilled %s blocks %s-%s: %s batches, %s new events",
            result.stream,
            result.start_block,
            result.end_block,
            result.batches,
            result.events,
        )
    elif args.command == "status":
        statuses = []
        for name in _selected_streams(args.stream):
            status = await service.get_scheduler(name).status()
            statuses.append({**asdict(status), "blocks_behind": status.blocks_behind})
        print(format_records(statuses, args.json))
    elif args.command == "deployment-block":
        blocks = []
        for name in _selected_streams(args.stream):
            block = await service.get_scheduler(name).deployment_block()
            blocks.append({"stream": name, "deployment_block": block})
        print(format_records(blocks, args.json))
    elif args.command == "refresh-analytics":
        count = await service.refresher.refresh()
        _LOG.info("Deposit summary holds %s blocks", count)
    elif args.command == "query":
        print(await _query(service, args))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Entry point of the eigenindexer command.

    :param argv: The arguments, sys.argv by default.
    :return: The process exit status.
    """
    args = build_parser().parse_args(argv)
    service = None
    try:
        args.config = IndexerConfig.create_instance_from_env(args.env_file)
        service = IndexerService.create_instance(args.config)
        return asyncio.run(run_command(service, args))
    except Exception:  # pylint: disable=broad-except
        _LOG.exception("Command %s failed", args.command)
        return 1
    finally:
        if service is not None:
            service.close()


if __name__ == "__main__":
    sys.exit(main())
