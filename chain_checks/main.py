from __future__ import annotations

import argparse
import asyncio
import contextlib
import os
import signal
from datetime import timedelta

import httpx
import structlog
import uvicorn

from chain_checks import __version__
from chain_checks.alert_cache import AlertCache
from chain_checks.config import DEFAULT_CONFIG_PATH, ChainChecksConfig, ConfigError, load_config, write_default_config
from chain_checks.logging_setup import close_log_output, configure_logging
from chain_checks.notifiers import build_notifiers
from chain_checks.probes import build_probes
from chain_checks.scheduler import Scheduler
from chain_checks.status_app import create_app
from chain_checks.store import SqliteStore, StoreError


logger = structlog.get_logger(__name__)

STORE_GC_INTERVAL_SECONDS = 10 * 60


class StatusServer(uvicorn.Server):
    # The daemon owns SIGINT/SIGTERM and stops the server itself.
    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


async def run_store_gc(store: SqliteStore, stop: asyncio.Event, *, interval_seconds: float = STORE_GC_INTERVAL_SECONDS) -> None:
    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
            return
        except asyncio.TimeoutError:
            pass
        try:
            removed = await asyncio.to_thread(store.purge_expired)
            logger.debug("Alert store GC finished", removed=removed)
        except StoreError as exc:
            logger.error("Failed to GC alert store", error=str(exc))


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform / outside the main thread.
            pass


async def run_service(cfg: ChainChecksConfig, *, once: bool = False) -> int:
    store = SqliteStore.in_data_dir(cfg.database.data_dir)
    cache = AlertCache(store, retention=timedelta(days=cfg.alerting.retention_days))
    headers = {"User-Agent": f"chain-checks/{__version__}"}

    try:
        async with httpx.AsyncClient(headers=headers) as client:
            probes = build_probes(cfg, client)
            notifiers = build_notifiers(cfg, client)
            scheduler = Scheduler(
                probes,
                notifiers,
                cache,
                interval_seconds=cfg.poll_interval,
                concurrency=cfg.probe_concurrency,
            )
            logger.info(
                "Starting chain-checks",
                version=__version__,
                probes=[p.name for p in probes],
                notifiers=[n.name for n in notifiers],
                poll_interval=cfg.poll_interval,
            )

            if once:
                summary = await scheduler.run_cycle()
                logger.info("Single cycle finished", summary=summary.to_dict())
                return 0

            stop = asyncio.Event()
            _install_signal_handlers(stop)

            host, port = cfg.network.listen_host_port
            server = StatusServer(
                uvicorn.Config(create_app(cache), host=host, port=port, log_level="warning", access_log=False)
            )
            server_task = asyncio.create_task(server.serve())
            while not server.started and not server_task.done():
                await asyncio.sleep(0.05)
            if server_task.done():
                raise RuntimeError(f"status server failed to start on {cfg.network.listen_addr}")
            logger.info("Status endpoint listening", listen_addr=cfg.network.listen_addr)

            gc_task = asyncio.create_task(run_store_gc(store, stop))
            try:
                await scheduler.run_forever(stop)
            finally:
                logger.info("Cleaning up and exiting")
                stop.set()
                server.should_exit = True
                await asyncio.gather(server_task, gc_task, return_exceptions=True)
    finally:
        store.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chain-checks",
        description="Monitor a Cosmos network and alert validators on governance, slashing and jailing events",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CHAIN_CHECKS_CONFIG", str(DEFAULT_CONFIG_PATH)),
        help="Path to YAML config",
    )
    parser.add_argument("--once", action="store_true", help="Run one poll cycle and exit")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING, ...)",
    )
    parser.add_argument("--log-output", default=None, help="Write JSON logs to this file instead of stdout")
    parser.add_argument("--init-config", action="store_true", help="Write a default config file and exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, output=args.log_output)

    if args.init_config:
        try:
            path = write_default_config(args.config)
        except ConfigError as exc:
            logger.error("Could not write default config", error=str(exc))
            return 1
        logger.info("Wrote default config", path=str(path))
        return 0

    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        logger.error("Invalid configuration", error=str(exc))
        return 2

    try:
        return asyncio.run(run_service(cfg, once=bool(args.once)))
    finally:
        close_log_output()


if __name__ == "__main__":
    raise SystemExit(main())
