import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Set

from ..agent import Agent
from ..config import DEFAULT_CONFIG_PATH, load_config
from ..errors import ConfigurationError
from ..transport import build_ssl_context, websocket_factory

logger = logging.getLogger("doom_agent")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


_shutdown_tasks: Set[asyncio.Task] = set()


def _shutdown_done(task: asyncio.Task) -> None:
    _shutdown_tasks.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error("Shutdown failed", exc_info=task.exception())


def _request_shutdown(agent: Agent, signame: str) -> asyncio.Task:
    logger.info("Received %s, shutting down", signame)
    task = asyncio.get_running_loop().create_task(agent.shutdown())
    _shutdown_tasks.add(task)
    task.add_done_callback(_shutdown_done)
    return task


def _install_signal_handlers(agent: Agent) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _request_shutdown, agent, sig.name)


async def run_async(args) -> None:
    config = load_config(args.config)
    url = args.url or config.url
    agent = Agent(config)
    _install_signal_handlers(agent)
    logger.info("Agent for engine %s (%s) in %s", config.engine.name, config.engine.executable, config.engine.workdir)
    await agent.serve(
        url,
        config.credential(),
        transport_factory=websocket_factory(build_ssl_context(config.cafile)),
        backoff=config.timeouts.reconnect_backoff,
    )


def main():
    parser = argparse.ArgumentParser(description="Doom server agent")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help=f"Path to agent config (default: {DEFAULT_CONFIG_PATH})")
    parser.add_argument("--url", default=None, help="Controller websocket URL (overrides config)")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("DOOM_AGENT_LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )
    args = parser.parse_args()

    setup_logging(args.log_level)

    try:
        asyncio.run(run_async(args))
    except ConfigurationError as exc:
        print(f"doom-agent: configuration error: {exc}", file=sys.stderr)
        sys.exit(2)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
