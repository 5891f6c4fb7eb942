#!/usr/bin/env python3
"""
Database initialization script for the mentor knowledge graph.

This script provides a command-line interface for initializing, seeding,
resetting and checking the Neo4j database.
"""

import asyncio
import sys
import argparse
import logging
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mentor_init import (
    initialize_database,
    seed_curriculum,
    reset_database,
    get_database_status,
)
from mentor_config import configure_logging, get_config, log_config_values
from mentor_connection import Neo4jConnectionManager
from mentor_errors import StoreUnavailableError


logger = logging.getLogger(__name__)


async def check_connection():
    """Check Neo4j connection before operations."""
    manager = Neo4jConnectionManager(get_config())

    try:
        logger.info("Checking Neo4j connection...")
        await manager.connect_async()
        logger.info("✅ Successfully connected to Neo4j")
        return True
    except (StoreUnavailableError, ValueError) as e:
        logger.error(f"❌ Failed to connect to Neo4j: {e}")
        logger.error("Please check your connection settings in .env file")
        return False
    finally:
        await manager.close_async()


async def init_command(args):
    """Handle init command."""
    logger.info("🚀 Starting database initialization...")

    if not await check_connection():
        return 1

    success = await initialize_database(force=args.force, seed=args.seed)

    if success:
        logger.info("✅ Database initialization completed successfully!")
        status = await get_database_status()
        print_status(status)
        return 0
    else:
        logger.error("❌ Database initialization failed!")
        return 1


async def seed_command(args):
    """Handle seed command."""
    if not await check_connection():
        return 1

    stats = await seed_curriculum()
    logger.info(f"✅ Seeded {stats.concepts} concepts across {stats.topics} topics")
    return 0


async def reset_command(args):
    """Handle reset command."""
    if not args.confirm:
        logger.error("❌ Database reset requires --confirm flag")
        logger.error("⚠️  WARNING: This will DELETE ALL DATA in the database!")
        logger.error("Run with: python scripts/init_database.py reset --confirm")
        return 1

    # Double confirmation
    print("\n⚠️  WARNING: This will DELETE ALL DATA in the database!")
    response = input("Type 'DELETE ALL DATA' to confirm: ")

    if response != "DELETE ALL DATA":
        logger.info("Reset cancelled")
        return 0

    if not await check_connection():
        return 1

    success = await reset_database(confirm=True)

    if not success:
        logger.error("❌ Database reset failed!")
        return 1

    logger.info("✅ Database reset completed!")
    if args.reinit:
        logger.info("🚀 Re-initializing database...")
        if not await initialize_database(force=True, seed=args.seed):
            logger.error("❌ Re-initialization failed!")
            return 1
        print_status(await get_database_status())
    return 0


async def status_command(args):
    """Handle status command."""
    logger.info("📊 Checking database status...")

    if not await check_connection():
        return 1

    status = await get_database_status()
    print_status(status, verbose=args.verbose)

    if not status["verified"]:
        logger.warning("⚠️  Database initialization is incomplete!")
        logger.info("Run: python scripts/init_database.py init")
        return 1

    return 0


def print_status(status: dict, verbose: bool = False):
    """Print database status in a formatted way."""
    print("\n" + "="*50)
    print("KNOWLEDGE GRAPH STATUS")
    print("="*50)

    print(f"Initialized: {'✅ Yes' if status['initialized'] else '❌ No'}")
    print(f"Verified: {'✅ Yes' if status['verified'] else '❌ No'}")

    print(f"\nSchema Objects:")
    print(f"  Constraints: {status['constraints']}")
    print(f"  Indexes: {status['indexes']}")

    print(f"\nCurriculum:")
    print(f"  Topics: {status['topics']}")
    print(f"  Concepts: {status['concepts']}")
    print(f"  BELONGS_TO: {status['belongs_to']}")
    print(f"  PREREQUISITE_FOR: {status['prerequisites']}")
    print(f"  RELATED_TO: {status['related_to']}")

    print(f"\nLearners:")
    print(f"  Users: {status.get('users', 0)}")
    print(f"  Learning events: {status.get('learning_events', 0)}")

    if verbose:
        print(f"\nPlaceholder concepts: {status.get('placeholder_concepts', 0)}")
        log_config_values()

    print("="*50 + "\n")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Database initialization for the mentor knowledge graph"
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    init_parser = subparsers.add_parser('init', help='Create constraints and indexes')
    init_parser.add_argument(
        '--force',
        action='store_true',
        help='Force re-initialization even if already initialized'
    )
    init_parser.add_argument(
        '--seed',
        action='store_true',
        help='Also load the starter programming curriculum'
    )

    subparsers.add_parser('seed', help='Load the starter programming curriculum')

    reset_parser = subparsers.add_parser('reset', help='Reset the database (DELETE ALL DATA)')
    reset_parser.add_argument(
        '--confirm',
        action='store_true',
        help='Confirm database reset'
    )
    reset_parser.add_argument(
        '--reinit',
        action='store_true',
        help='Re-initialize after reset'
    )
    reset_parser.add_argument(
        '--seed',
        action='store_true',
        help='Seed the curriculum when re-initializing'
    )

    status_parser = subparsers.add_parser('status', help='Check database status')
    status_parser.add_argument(
        '--verbose',
        '-v',
        action='store_true',
        help='Show verbose status'
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    configure_logging()

    commands = {
        'init': init_command,
        'seed': seed_command,
        'reset': reset_command,
        'status': status_command,
    }
    return asyncio.run(commands[args.command](args))


if __name__ == "__main__":
    sys.exit(main())
