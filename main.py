"""Limbo BBS Server Entry Point.

Main entry point for the Limbo bulletin board server. It handles
configuration, logging, database initialization, and runs the TCP server
until interrupted. A few maintenance flags operate on the database and
exit without serving.
"""

import sys
import argparse
import logging
import asyncio
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Import configuration
from config.config_manager import ConfigManager

# Import core components
from core.bbs_server import BBSServer, ServerError
from core.crypto_manager import PasswordHasher
from core.db_manager import DBManager
from core.error_handler import ErrorHandler
from core.identifiers import InvalidIdFormat, canonical_thread_id

# Import logic layer
from logic.bbs_handler import BBSHandler


# Configure logging
def setup_logging(log_level: str, log_path: Path, max_bytes: int = 10485760, backup_count: int = 5):
    """
    Configure server logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_path: Path to log file
        max_bytes: Size at which the log file is rotated
        backup_count: Number of rotated log files kept
    """
    # Ensure log directory exists
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # Configure root logger
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            RotatingFileHandler(
                log_path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
            ),
            logging.StreamHandler(sys.stdout)
        ]
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized at level {log_level}")
    logger.info(f"Log file: {log_path}")


def parse_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description='Limbo - Tag-based Bulletin Board Server',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run normally
  python main.py

  # Listen on another port with CBOR framing
  python main.py --port 9001 --codec cbor

  # Give a user moderator rights and exit
  python main.py --grant-admin alice

  # Specify custom config file
  python main.py --config /path/to/settings.yaml
        """
    )

    parser.add_argument(
        '--host',
        type=str,
        default=None,
        help='Address to bind (default: from config)'
    )

    parser.add_argument(
        '--port',
        type=int,
        default=None,
        help='Listen port (default: from config or 8828)'
    )

    parser.add_argument(
        '--codec',
        type=str,
        default=None,
        choices=['json', 'cbor'],
        help='Wire codec (default: from config)'
    )

    parser.add_argument(
        '--config',
        type=str,
        default=None,
        metavar='PATH',
        help='Path to configuration file'
    )

    parser.add_argument(
        '--log-level',
        type=str,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Override logging level from config'
    )

    parser.add_argument(
        '--grant-admin',
        type=str,
        default=None,
        metavar='USERNAME',
        help='Give a user elevated privileges and exit'
    )

    parser.add_argument(
        '--close-thread',
        type=str,
        default=None,
        metavar='THREAD_ID',
        help='Close a thread to replies from ordinary users and exit'
    )

    parser.add_argument(
        '--sticky-thread',
        type=str,
        default=None,
        metavar='THREAD_ID',
        help='Mark a thread as sticky and exit'
    )

    return parser.parse_args(argv)


def build_handler(config_manager: ConfigManager, db_manager: DBManager) -> BBSHandler:
    """
    Wire the command handler from configuration.

    Args:
        config_manager: Loaded configuration
        db_manager: Initialized database manager

    Returns:
        BBSHandler ready to serve
    """
    board = config_manager.get_board_config()
    listing = config_manager.get_listing_config()
    thread = config_manager.get_thread_config()
    security = config_manager.get_security_config()

    hasher = PasswordHasher(
        min_length=security.min_password_length,
        n=security.scrypt_n,
    )

    return BBSHandler(
        db_manager,
        hasher,
        board_name=board.name,
        board_description=board.description,
        icon_url=board.icon_url,
        username_length_limit=security.username_length_limit,
        default_range=thread.default_range,
        page_size=listing.page_size,
        anchor_skew=listing.anchor_skew,
        error_handler=ErrorHandler(),
    )


def run_maintenance(args: argparse.Namespace, db_manager: DBManager) -> int:
    """
    Apply maintenance flags to the database.

    Returns:
        Process exit code
    """
    logger = logging.getLogger(__name__)

    if args.grant_admin:
        if not db_manager.set_admin(args.grant_admin.lower()):
            logger.error(f"No such user: {args.grant_admin}")
            return 1
        logger.info(f"Granted admin to {args.grant_admin}")

    for thread_arg, flags in (
        (args.close_thread, {'closed': True}),
        (args.sticky_thread, {'sticky': True}),
    ):
        if not thread_arg:
            continue
        try:
            thread_id = canonical_thread_id(thread_arg)
        except InvalidIdFormat:
            logger.error(f"Invalid thread ID: {thread_arg}")
            return 1
        if not db_manager.set_thread_flags(thread_id, **flags):
            logger.error(f"No such thread: {thread_id}")
            return 1
        logger.info(f"Updated thread {thread_id}: {flags}")

    return 0


async def serve(server: BBSServer, host: str, port: int) -> None:
    """Start the server and serve until cancelled."""
    await server.start(port=port, host=host)
    try:
        await server.serve_forever()
    finally:
        await server.stop()


def main(argv: Optional[list] = None) -> int:
    """
    Main server entry point.

    Initializes all components and runs the server.
    """
    # Parse command-line arguments
    args = parse_arguments(argv)

    # Initialize configuration manager
    config_path = Path(args.config) if args.config else None
    try:
        config_manager = ConfigManager(config_path)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    # Command-line overrides
    if args.host:
        config_manager.set_config('server', 'host', args.host)
    if args.port is not None:
        config_manager.set_config('server', 'port', args.port)
    if args.codec:
        config_manager.set_config('server', 'codec', args.codec)

    # Setup logging
    logging_config = config_manager.get_logging_config()
    log_level = args.log_level or logging_config.level
    setup_logging(
        log_level,
        config_manager.expand_path(logging_config.log_path),
        logging_config.max_log_size,
        logging_config.backup_count,
    )
    logger = logging.getLogger(__name__)

    # Initialize database
    storage_config = config_manager.get_storage_config()
    db_path = config_manager.expand_path(storage_config.db_path)
    db_manager = DBManager(db_path)
    try:
        db_manager.initialize_database()
    except Exception as e:
        logger.critical(f"Couldn't open database ({db_path}): {e}")
        return 1
    logger.info(f"Database: {db_path}")

    if args.grant_admin or args.close_thread or args.sticky_thread:
        code = run_maintenance(args, db_manager)
        db_manager.close()
        return code

    handler = build_handler(config_manager, db_manager)
    server_config = config_manager.get_server_config()
    server = BBSServer(
        handler,
        codec=server_config.codec,
        max_frame_size=server_config.max_frame_size,
    )

    try:
        asyncio.run(serve(server, server_config.host, server_config.port))
    except ServerError as e:
        logger.critical(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        db_manager.close()

    return 0


if __name__ == '__main__':
    sys.exit(main())
