#!/usr/bin/env python3
"""
Gift Wheel Application

Main entry point for the livestream gift wheel: receives gift webhooks,
collapses combo bursts into entries and serves the wheel API.
"""

import asyncio
import signal
import sys
import traceback
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root (3 levels up from this file)
load_dotenv(Path(__file__).resolve().parents[2] / '.env')

from giftwheel.utils.config import get_config_value, load_config
from giftwheel.utils.logger import get_logger
from giftwheel.utils.persistence import JsonFileStore
from giftwheel.web_server import GiftWheelWebServer
from giftwheel.wheel.draw import DrawEngine
from giftwheel.wheel.event_manager import GiftEventManager
from giftwheel.wheel.models import WheelSettings
from giftwheel.wheel.roster import ParticipantRoster
from giftwheel.wheel.store import WheelStore

logger = get_logger(__name__)


class GiftWheelApp:
    """Gift wheel application.

    Responsible for building the persistent store, roster, gift pipeline and
    the FastAPI web server. Handles graceful shutdown and provides a
    lightweight startup summary for diagnostics.
    """

    def __init__(self, config=None):
        self.config = config or load_config()
        self.store = None
        self.roster = None
        self.event_manager = None
        self.web_server = None
        self.running = True

        logger.info("🎡 Gift Wheel Application initialized")

    def _display_config_summary(self):
        """Display key configuration options for diagnostics."""
        logger.info("=" * 60)
        logger.info("📋 CONFIGURATION SUMMARY")
        logger.info("=" * 60)

        wheel_config = self.config.get('wheel', {})
        logger.info(f"🔁 Dedupe Window: {wheel_config.get('dedupe_window_ms')}ms")
        logger.info(f"⏳ Combo Lifetime: {wheel_config.get('combo_lifetime_ms')}ms")
        logger.info(f"⏱️  Combo Delay: {wheel_config.get('combo_delay_ms')}ms above {wheel_config.get('combo_value_threshold')} coins")
        logger.info(f"💾 State File: {get_config_value(self.config, 'storage.path')}")

        server_config = self.config.get('server', {})
        logger.info(f"🌍 Server Host: {server_config.get('host', '0.0.0.0')}")
        logger.info(f"🔌 Server Port: {server_config.get('port', 3000)}")

        logger.info("=" * 60)

    def initialize(self):
        """Build persistence, store, roster, gift pipeline and web server."""
        logger.info("🚀 Initializing Gift Wheel Application")
        self._display_config_summary()

        wheel_config = self.config.get('wheel', {})
        persistence = JsonFileStore(get_config_value(self.config, 'storage.path'))
        self.store = WheelStore(
            persistence,
            defaults=WheelSettings(
                max_limit=int(wheel_config.get('max_limit', 0)),
                min_coins=int(wheel_config.get('min_coins', 0)),
                target_gift=str(wheel_config.get('target_gift', '') or ''),
            ),
            feed_capacity=int(wheel_config.get('live_feed_max_entries', 50)),
        )
        self.store.load()

        self.roster = ParticipantRoster(self.store)
        self.roster.load()

        self.event_manager = GiftEventManager(self.store, self.roster, self.config)

        draw_config = self.config.get('draw', {})
        draw_engine = DrawEngine(
            spin_duration_ms=int(draw_config.get('spin_duration_ms', 4000)),
            min_rotations=int(draw_config.get('min_rotations', 5)),
            max_rotations=int(draw_config.get('max_rotations', 7)),
        )

        logger.info("🌐 Initializing web server...")
        self.web_server = GiftWheelWebServer(self.config, self.event_manager, draw_engine)

        logger.info("🎉 Application initialization completed")

    async def start(self):
        """Start services and run until a shutdown signal is received."""
        try:
            self.initialize()

            logger.info("🧹 Starting gift pipeline housekeeping...")
            await self.event_manager.start()

            server_host = self.config.get('server', {}).get('host', '0.0.0.0')
            server_port = int(self.config.get('server', {}).get('port', 3000))

            logger.info(f"🌍 Starting web server on {server_host}:{server_port}...")
            server_task = asyncio.create_task(self.web_server.start(host=server_host, port=server_port))
            # Give the server a moment to attempt bind; if it fails the task will be done
            await asyncio.sleep(0.2)
            if server_task.done():
                exc = server_task.exception()
                if exc:
                    logger.error(f"Web server task failed during startup: {exc}")
                    raise exc

            self._display_startup_summary()

            # Run until signal or until the server exits on its own
            while self.running and not server_task.done():
                await asyncio.sleep(1)

            logger.info("🛑 Shutdown signal received, stopping application...")

        finally:
            await self.stop()

    async def stop(self):
        """Stop all services and flush state."""
        logger.info("🛑 Stopping Gift Wheel Application")
        self.running = False

        # Stop gift pipeline; finalizes combos that were still waiting
        if self.event_manager is not None:
            try:
                await self.event_manager.stop()
                logger.info("✅ Gift pipeline stopped")
            except Exception as e:
                logger.error(f"❌ Error stopping gift pipeline: {e}")
            self.event_manager = None

        if self.web_server is not None:
            try:
                await self.web_server.stop()
                logger.info("✅ Web server stopped")
            except Exception as e:
                logger.error(f"❌ Error stopping web server: {e}")
            self.web_server = None

        logger.info("🟢 Gift Wheel Application stopped")

    def _display_startup_summary(self):
        logger.info("=" * 60)
        logger.info("🎡 GIFT WHEEL STARTED")
        logger.info("=" * 60)

        settings = self.store.get_settings()
        logger.info(f"🎯 Mode: {settings.mode.value} (min coins {settings.min_coins})")
        logger.info(f"📏 Max Limit: {settings.max_limit or 'No Limit'}")
        logger.info(f"🎁 Target Gift: {settings.target_gift or 'any'}")
        logger.info(f"👥 Participants: {len(self.roster)}, users: {len(self.store.get_accounts())}")

        server_config = self.config.get('server', {})
        host = server_config.get('host', '0.0.0.0')
        port = server_config.get('port', 3000)

        logger.info("=" * 60)
        logger.info("🌐 SERVER ACCESS")
        logger.info("=" * 60)
        logger.info(f"📥 Webhook URL: http://{host}:{port}/webhook")
        logger.info(f"📡 Event Stream: http://{host}:{port}/events")
        logger.info(f"📡 WebSocket API: ws://{host}:{port}/ws/wheel")
        logger.info(f"🧪 Test Webhook: http://{host}:{port}/test-webhook")
        logger.info("=" * 60)

    def _handle_signal(self, signum, frame):
        logger.info(f"📡 Received signal {signum}, initiating graceful shutdown...")
        self.running = False


async def main():
    """Main entry point for the Gift Wheel Application"""
    app = GiftWheelApp()

    # Set up signal handlers for graceful shutdown
    signal.signal(signal.SIGINT, app._handle_signal)
    signal.signal(signal.SIGTERM, app._handle_signal)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("🛑 Application interrupted by user")
    except Exception as e:
        logger.error(f"❌ Application failed: {e}")
        logger.error(f"🔍 Error details: {traceback.format_exc()}")
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
