"""
Command line entry point for the snapshot agent.

Usage: vault-snapshot-agent --config /path/to/config.json [--once] [--debug]

Exit codes:
  0 - Agent stopped normally (or the single cycle succeeded with --once)
  1 - Configuration error, fatal Vault error, or a failed destination with --once
"""

import os
import sys
import signal
import logging
import argparse

from . import configure_logging, create_agent
from . import scheduler as scheduler_module
from .auth import AuthError
from .config import ConfigError, load_config
from .backup.executor import FATAL_ERRORS
from .backup.storage import StorageError


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='vault-snapshot-agent',
        description='Periodically back up Vault raft snapshots to local and S3 storage.'
    )
    parser.add_argument('--config', default='', help='The path to the config file (in json)')
    parser.add_argument('--once', action='store_true', help='Run a single snapshot cycle and exit')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    return parser


def _handle_sigterm(signum, frame):
    logger.info("Received SIGTERM, shutting down")
    scheduler_module.stop_scheduler()


def run_once(agent) -> int:
    try:
        result = agent.run_cycle()
    except FATAL_ERRORS as e:
        logger.critical(f"{type(e).__name__}: {e}")
        return 1

    return 0 if result.all_succeeded else 1


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(debug=args.debug, log_dir=os.environ.get('SNAPSHOT_AGENT_LOG_DIR'))

    try:
        logger.info(f"Reading configuration from '{args.config}'")
        config = load_config(args.config)
        agent = create_agent(config)
    except ConfigError as e:
        logger.critical(f"Configuration error: {e}")
        return 1
    except (AuthError, StorageError) as e:
        logger.critical(f"Cannot instantiate snapshot agent: {e}")
        return 1

    if args.once:
        return run_once(agent)

    scheduler_module.init_scheduler(agent, config.frequency)
    signal.signal(signal.SIGTERM, _handle_sigterm)

    try:
        scheduler_module.start_scheduler()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Interrupted, shutting down")
        scheduler_module.stop_scheduler()

    if scheduler_module.fatal_error is not None:
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
