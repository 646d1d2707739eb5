"""Command line entry point for the edge router."""

import asyncio
import logging

import click

from edgeroute.core.config import load_config
from edgeroute.core.gateway import EdgeGateway

logger = logging.getLogger("edgeroute.main")


async def main(config_path: str | None = None, check_only: bool = False) -> int:
    """Load configuration, build the router tree and serve until interrupted.

    Args:
        config_path: Optional path to the YAML configuration
        check_only: Build the router tree and exit without serving

    Returns:
        Process exit code
    """
    try:
        config = load_config(config_path)
        gateway = EdgeGateway(config)
    except ValueError as e:
        # Logging is not configured yet; the last-resort handler prints to stderr
        logger.error(f"Invalid configuration: {e}")
        return 1

    if check_only:
        logger.info(f"Configuration OK: {len(gateway.router)} top-level routes")
        return 0

    try:
        await gateway.run_forever()
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    return 0


@click.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    envvar="EDGEROUTE_CONFIG_PATH",
    type=click.Path(dir_okay=False),
    help="Path to the YAML configuration file",
)
@click.option("--check", is_flag=True, help="Validate the configuration and exit")
def run(config_path: str | None, check: bool) -> None:
    """Declarative edge router."""
    exit_code = asyncio.run(main(config_path, check_only=check))
    raise SystemExit(exit_code)


if __name__ == "__main__":
    run()
