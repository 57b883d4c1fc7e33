"""Main entry point module.

Handles CLI arguments, monitor lifecycle, signal handling, and clean shutdown.
"""

import argparse
import logging
import signal
import sys
import threading
from typing import Any, Dict, List, Optional

import config as config_module
import database
import twitch_client
from channel_source import ChannelSource
from monitor import GAME_CACHE_NAMESPACE, USER_CACHE_NAMESPACE, StreamMonitor
from record_cache import RecordCache


logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def log_live_update(
    stream_state: Dict[str, Any], is_online: bool, channels: Optional[List[Dict[str, Any]]]
) -> bool:
    """Default live-update subscriber that logs the transition."""
    name = stream_state.get("user_name") or stream_state.get("display_name") or "?"
    if is_online:
        game = stream_state.get("game") or {}
        logger.info(
            f"{name} is live: {stream_state.get('title', '')!r} "
            f"({game.get('name', 'no game')}, {stream_state.get('viewer_count', 0)} viewers)"
        )
    else:
        logger.info(f"{name} is no longer live")
    return True


def log_offline(stream_state: Dict[str, Any]) -> bool:
    """Default offline subscriber that logs the end of a stream."""
    logger.info(
        f"Stream ended for {stream_state.get('user_name') or stream_state.get('display_name')}"
    )
    return True


def build_monitor(cfg: config_module.Config, conn: Any) -> StreamMonitor:
    """Wire the monitor to its Helix client, channel source and caches.

    Args:
        cfg: Configuration object
        conn: Database connection shared by both caches

    Returns:
        StreamMonitor with the default logging subscribers registered
    """
    client = twitch_client.build_twitch_client(cfg)
    stream_monitor = StreamMonitor(
        cfg,
        client,
        ChannelSource(cfg),
        RecordCache(conn, USER_CACHE_NAMESPACE),
        RecordCache(conn, GAME_CACHE_NAMESPACE),
    )
    stream_monitor.on_channel_live_update(log_live_update)
    stream_monitor.on_channel_offline(log_offline)
    return stream_monitor


def main() -> int:
    """Main entry point.

    Returns:
        Exit code (0 for clean shutdown)
    """
    parser = argparse.ArgumentParser(description="Twitch Stream Status Monitor")
    parser.add_argument(
        "--config", required=True, help="Path to configuration YAML file"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    log_level = logging.DEBUG if args.debug else logging.INFO
    setup_logging(log_level)

    try:
        cfg = config_module.load_config(args.config)
        logger.info(f"Configuration loaded from {args.config}")
    except config_module.ConfigError as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        return 1

    try:
        conn = database.init_db(cfg.database.path)
        logger.info(f"Database initialized at {cfg.database.path}")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        return 1

    try:
        stream_monitor = build_monitor(cfg, conn)
    except ValueError as e:
        logger.error(str(e))
        conn.close()
        return 1

    shutdown_event = threading.Event()

    def handle_signal(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    stream_monitor.start()

    # Main thread heartbeat
    try:
        while not shutdown_event.wait(timeout=30):
            logger.debug(f"Heartbeat: active streams={stream_monitor.active_streams}")
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        shutdown_event.set()

    logger.info("Shutting down...")
    stream_monitor.close()
    conn.close()

    logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
