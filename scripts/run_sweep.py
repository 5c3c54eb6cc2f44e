#!/usr/bin/env python3
"""
PinDrop lifecycle sweep CLI
Purges expired buckets and inactive buckets past their grace period.
Meant to be run by cron when the in-process sweep is disabled.
"""

import sys
import json
import asyncio
import logging
import argparse

from backend.dependencies import build_services
from shared.config.config_manager import ConfigManager, ConfigValidationError
from shared.database.connection_manager import DatabaseConnectionError
from shared.services.errors import PinDropError


logger = logging.getLogger("pindrop.sweep")


async def run(config: ConfigManager, initialize_schema: bool) -> dict:
    services = build_services(config)
    try:
        if initialize_schema:
            await services.database.initialize_schema()
        summary = await services.access.run_sweep()
        return summary.to_dict()
    finally:
        await services.close()


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="PinDrop lifecycle sweep",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                             # Run one sweep with settings from .env files
  %(prog)s --config-dir /etc/pindrop   # Read .env files from another directory
  %(prog)s --json                      # Print the summary as JSON
"""
    )
    parser.add_argument(
        "--config-dir",
        help="Directory containing .env files (default: current directory)"
    )
    parser.add_argument(
        "--init-schema",
        action="store_true",
        help="Create the bucket and file tables first if they are missing"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the sweep summary as JSON"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        config = ConfigManager(config_dir=args.config_dir, validate_secrets=True)
        summary = asyncio.run(run(config, args.init_schema))
    except ConfigValidationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(2)
    except (PinDropError, DatabaseConnectionError) as e:
        logger.error(f"Sweep failed: {e}")
        sys.exit(1)

    if args.json:
        print(json.dumps(summary, indent=2))
    else:
        print(
            f"Purged {summary['total_buckets']} buckets "
            f"({summary['expired_buckets']} expired, {summary['inactive_buckets']} inactive), "
            f"{summary['files_deleted']} files, {summary['bytes_freed']} bytes freed, "
            f"{summary['orphaned_blobs']} orphaned blobs, {summary['failed_buckets']} failures"
        )
    sys.exit(1 if summary["failed_buckets"] else 0)


if __name__ == "__main__":
    main()
