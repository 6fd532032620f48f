"""Service entry point: wires registry, monitor, notifier and API together."""

import asyncio
import logging
import signal
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional

import yaml
import uvicorn

from .aggregator import ConcurrencyAggregator, DEFAULT_CHUNK_SIZE
from .dwell import DWELL_TICK_SECONDS
from .monitor import SessionMonitor
from .notifier import DesktopChannel, Notifier, TelegramChannel
from .registry import SessionRegistry
from .server import create_app
from .tab_titles import TabTitleResolver

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = "~/.claude/logs/lifecycle"
EVENTS_FILENAME = "all-events.jsonl"


def load_config(config_path: str = "config.yaml") -> dict:
    """Load configuration from YAML file."""
    path = Path(config_path)

    if not path.exists():
        logger.warning(f"Config file not found: {config_path}, using defaults")
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


class AgentMonitorApp:
    """Owns every long-lived component of the monitor service."""

    def __init__(self, config: dict):
        self.config = config

        # Server config
        self.host = config.get("server", {}).get("host", "127.0.0.1")
        self.port = config.get("server", {}).get("port", 8421)

        # Paths
        paths = config.get("paths", {})
        self.log_dir = paths.get("log_dir", DEFAULT_LOG_DIR)
        self.events_file = paths.get("events_file", str(Path(self.log_dir) / EVENTS_FILENAME))

        monitor_config = config.get("monitor", {})
        self.registry = SessionRegistry(
            log_dir=self.log_dir,
            fresh_window=timedelta(seconds=monitor_config.get("fresh_waiting_seconds", 60)),
            events_file=self.events_file,
        )

        self.notifier = Notifier(channels=self._build_channels())

        tab_resolver = None
        if monitor_config.get("resolve_tab_titles", True):
            tab_resolver = TabTitleResolver()

        self.monitor = SessionMonitor(
            registry=self.registry,
            notifier=self.notifier,
            tab_resolver=tab_resolver,
            tick_interval=monitor_config.get("tick_interval", DWELL_TICK_SECONDS),
            watch_debounce_ms=monitor_config.get("watch_debounce_ms", 300),
            notify_on_startup=monitor_config.get("notify_on_startup", True),
        )

        analytics_config = config.get("analytics", {})
        self.aggregator = ConcurrencyAggregator(
            events_file=self.events_file,
            chunk_size=analytics_config.get("chunk_size", DEFAULT_CHUNK_SIZE),
        )

        # Create FastAPI app
        self.app = create_app(
            monitor=self.monitor,
            aggregator=self.aggregator,
            config=config,
        )

    def _build_channels(self) -> list:
        channels = []
        if self.config.get("notifications", {}).get("desktop", True):
            channels.append(DesktopChannel())

        # Telegram (optional)
        telegram_config = self.config.get("telegram", {})
        if telegram_config.get("token") and telegram_config.get("chat_id"):
            channels.append(TelegramChannel(
                token=telegram_config["token"],
                chat_id=telegram_config["chat_id"],
            ))
        return channels

    async def start(self):
        """Start all components."""
        logger.info("Starting Agent Monitor...")

        try:
            await self.notifier.start()
        except Exception as e:
            logger.error(f"Notifier failed to start, continuing without it: {e}")

        await self.monitor.start()
        logger.info(f"Monitoring {len(self.monitor.snapshot)} sessions in {self.registry.log_dir}")

        # Start the web server
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level=self.config.get("logging", {}).get("level", "INFO").lower(),
        )
        server = uvicorn.Server(config)

        logger.info(f"Starting server on http://{self.host}:{self.port}")

        # Run until shutdown
        await server.serve()

    async def stop(self):
        """Stop all components."""
        logger.info("Stopping Agent Monitor...")
        await self.monitor.stop()
        await self.notifier.stop()
        logger.info("Shutdown complete")


def setup_signal_handlers(app: AgentMonitorApp):
    """Set up signal handlers for graceful shutdown."""
    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down...")
        asyncio.create_task(app.stop())
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


async def main(config_path: str = "config.yaml"):
    """Main entry point."""
    config = load_config(config_path)

    # Setup logging
    level = config.get("logging", {}).get("level", "INFO")
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = AgentMonitorApp(config)
    setup_signal_handlers(app)

    try:
        await app.start()
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()


def run(config_path: Optional[str] = None):
    """Entry point for console script."""
    asyncio.run(main(config_path or "config.yaml"))


if __name__ == "__main__":
    run()
