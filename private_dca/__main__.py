"""
Private DCA daemon.

Fires every active schedule on its timer until interrupted.

Usage:
    python -m private_dca
    python -m private_dca --config ~/.private-dca/config.json --verbose
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from private_dca.config import load_config
from private_dca.errors import DCAError
from private_dca.logging_config import setup_logging
from private_dca.sdk import PrivateDCA

logger = logging.getLogger(__name__)


def parse_args(args=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Private DCA schedule daemon")
    parser.add_argument("--config", "-c", type=Path, help="Path to config.json")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-dir", default=None, help="Log directory (default: <data_dir>/logs)")
    return parser.parse_args(args)


def main(args=None) -> None:
    """Main entry point."""
    args = parse_args(args)
    config = load_config(args.config)
    setup_logging(
        log_dir=args.log_dir or config.data_path / "logs",
        level="DEBUG" if args.verbose else config.log_level,
    )

    logger.info("Starting Private DCA daemon")
    logger.info(f"  Network: {config.network}")
    logger.info(f"  Data dir: {config.data_path}")
    logger.info(f"  Strict privacy: {config.strict_privacy}")

    try:
        asyncio.run(PrivateDCA(config).run_forever())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except DCAError as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
