"""Command line entry point for the GitOps agent."""

import argparse
import asyncio
import logging
import sys

from . import __version__
from .agent import GitOpsAgent
from .config.exceptions import ConfigurationError
from .config.models import AgentConfig

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_CONFIG_PATH = "/etc/gitops-agent/config.yaml"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gitops-agent",
        description="Watch git repositories and run actions when watched paths change",
    )
    parser.add_argument(
        "--config", default=DEFAULT_CONFIG_PATH, help="Configuration file path"
    )
    parser.add_argument("--log-level", default="info", help="Log level")
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser.parse_args(argv)


def _level(name: str) -> int:
    name = name.strip().upper()
    if name == "WARN":
        name = "WARNING"
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: str, log_file: str | None = None) -> None:
    """Route log records to stderr or to ``log_file``."""
    handlers: list[logging.Handler] | None = None
    if log_file:
        handlers = [logging.FileHandler(log_file)]

    logging.basicConfig(
        level=_level(level),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def _apply_agent_logging(args: argparse.Namespace, agent_config: AgentConfig) -> None:
    # An explicit command line level wins over the configured one.
    level = args.log_level if args.log_level != "info" else agent_config.log_level.value
    try:
        configure_logging(level, agent_config.log_file)
    except OSError as e:
        configure_logging(level)
        logger.error(f"Cannot open log file {agent_config.log_file}: {e}")


async def main(argv: list[str] | None = None) -> None:
    """Main entry point for the GitOps agent."""
    args = parse_args(argv)
    configure_logging(args.log_level)

    agent = GitOpsAgent(config_path=args.config)

    try:
        await agent.initialize()
        _apply_agent_logging(args, agent.config.agent)
        logger.info(f"gitops-agent {__version__} using config {args.config}")
        await agent.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e.report()}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Agent failed: {e}")
        sys.exit(1)
    finally:
        await agent.stop()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
