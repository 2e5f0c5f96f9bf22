"""
Toggle main module.

Switches between two machines running redis as a primary/replica setup. When the
primary stops answering, the replica is told REPLICAOF no one, nginx is pointed at
it, and the old primary keeps being asked to replicate from the new one until it
comes back.

    kill -USR1 <pid>

forces a switch. With -p the toggle also serves its topology over HTTP so follower
toggles (--follower --main=<ip> -p <port>) can copy it and drive their own nginx.
"""

import argparse
import asyncio
import logging
import signal
import sys
from contextlib import asynccontextmanager
from typing import Callable, Optional

import uvicorn
import yaml
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from config.config_loader import ToggleSettings
from config.topology import TopologyError
from monitoring.failover_manager import BootstrapFatal
from toggle.api_endpoints import router as api_router
from toggle.startup import init_system_components

VERSION = "0.3.0"

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP, signal.SIGQUIT)

# uvicorn only handles SIGINT and SIGTERM itself
SERVER_STOP_SIGNALS = (signal.SIGHUP, signal.SIGQUIT)

logger = logging.getLogger(__name__)


async def _tick_loop(tick: Callable[[], object], interval: int, stop: asyncio.Event):
    """
    Run `tick` in a worker thread every `interval` seconds. The wait starts once
    the previous tick is done, so a slow tick delays the next one instead of
    overlapping it.
    """
    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
            return
        except asyncio.TimeoutError:
            pass
        try:
            await asyncio.to_thread(tick)
        except Exception:
            logger.exception("Check failed")


class TickRunner:
    def __init__(self, tick: Callable[[], object], interval: int, switch: Optional[Callable[[], bool]] = None):
        self.tick = tick
        self.interval = interval
        self.switch = switch
        self._stop: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._switches = set()

    def start(self):
        loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        self._task = loop.create_task(_tick_loop(self.tick, self.interval, self._stop))
        if self.switch is not None:
            loop.add_signal_handler(signal.SIGUSR1, self._on_switch_signal)

    def request_stop(self):
        if self._stop is not None:
            self._stop.set()

    def _on_switch_signal(self):
        logger.info("Switching due to signal")
        task = asyncio.get_running_loop().create_task(asyncio.to_thread(self.switch))
        self._switches.add(task)
        task.add_done_callback(self._switch_done)

    def _switch_done(self, task: asyncio.Task):
        self._switches.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Manual switch failed", exc_info=task.exception())

    async def stop(self):
        """Stop ticking and wait for the tick in flight, if any."""
        self.request_stop()
        if self.switch is not None:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGUSR1)
        if self._task is not None:
            await self._task
        if self._switches:
            await asyncio.gather(*self._switches, return_exceptions=True)

    async def run_until_signalled(self):
        """Used when there is no HTTP server to own the process signals."""
        loop = asyncio.get_running_loop()
        self.start()
        for sig in STOP_SIGNALS:
            loop.add_signal_handler(sig, self.request_stop)
        await self._stop.wait()
        logger.info("Toggle stopping")
        await self.stop()


def _request_server_exit(app: FastAPI):
    server = getattr(app.state, "server", None)
    if server is not None:
        server.should_exit = True


def create_status_app(components: dict, runner: TickRunner) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        loop = asyncio.get_running_loop()
        runner.start()
        for sig in SERVER_STOP_SIGNALS:
            loop.add_signal_handler(sig, _request_server_exit, app)
        logger.info("Toggle checks started, every %d second(s)", runner.interval)
        yield
        logger.info("Toggle stopping")
        for sig in SERVER_STOP_SIGNALS:
            loop.remove_signal_handler(sig)
        await runner.stop()

    app = FastAPI(title="Redis Toggle", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # store components on app.state so endpoints can access them
    app.state.topology_store = components["topology_store"]
    app.state.failover_manager = components["failover_manager"]
    app.state.runner = runner

    app.include_router(api_router)

    return app


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="toggle", description="Redis primary/replica toggle")
    parser.add_argument("-v", "--version", action="version", version=f"Toggle Version: {VERSION}")
    parser.add_argument("-i", "--interval", type=int, help="Interval in seconds to check if the primary is alive")
    parser.add_argument("-r", "--retry", type=int, help="Interval in seconds to double check if the primary is alive")
    parser.add_argument("-c", "--config", dest="config_file", help="Location of the topology file")
    parser.add_argument("-p", "--port", dest="status_port", type=int,
                        help="Port to serve the current topology on (main) or to read it from (follower)")
    parser.add_argument("--follower", "--subordinate", dest="follower", action="store_true", default=None,
                        help="Only poll the main toggle for changes, never switch")
    parser.add_argument("--main", dest="main_address", help="Address of the main toggle to copy")
    parser.add_argument("--testing", action="store_true", default=None,
                        help="Write configs and log, but don't reload nginx or change redis roles")
    parser.add_argument("--settings", help="YAML file with additional settings")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> ToggleSettings:
    overrides = {
        "interval": args.interval,
        "retry": args.retry,
        "config_file": args.config_file,
        "status_port": args.status_port,
        "follower": args.follower,
        "main_address": args.main_address,
        "testing": args.testing,
    }
    return ToggleSettings.build(args.settings, overrides)


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def run_follower(settings: ToggleSettings, components: dict) -> int:
    logger.info("Toggle running as follower of %s:%d", settings.main_address, settings.status_port)
    runner = TickRunner(components["replication_sync"].poll, settings.interval)
    asyncio.run(runner.run_until_signalled())
    return 0


def run_main(settings: ToggleSettings, components: dict) -> int:
    failover = components["failover_manager"]
    try:
        components["topology_store"].load()
        failover.validate()
    except (TopologyError, BootstrapFatal) as e:
        logger.critical("%s", e)
        return 1

    runner = TickRunner(failover.run_check, settings.interval, switch=failover.switch)
    if settings.status_port > 0:
        logger.info("Toggle running as main on port: %d", settings.status_port)
        app = create_status_app(components, runner)
        server = uvicorn.Server(uvicorn.Config(app, host="0.0.0.0", port=settings.status_port, log_config=None))
        app.state.server = server
        server.run()
    else:
        asyncio.run(runner.run_until_signalled())

    # not waited for, they pick up again from the next start's role re-assertion
    components["recovery_manager"].cancel_all()
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        settings = build_settings(args)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        configure_logging()
        logger.critical("Invalid settings :: %s", e)
        return 2

    configure_logging(settings.log_level)
    components = init_system_components(settings)
    if settings.follower:
        return run_follower(settings, components)
    return run_main(settings, components)


if __name__ == "__main__":
    sys.exit(main())
