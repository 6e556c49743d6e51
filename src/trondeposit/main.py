"""Main entry point - runs both the API and the chain scanner."""

import asyncio
import logging
import signal
import sys
from typing import Optional

import uvicorn

from trondeposit.api.app import create_app
from trondeposit.config import get_settings
from trondeposit.exceptions import MasterSecretError
from trondeposit.hdwallet import validate_wallet_config
from trondeposit.ledger.database import close_db, init_db
from trondeposit.scanner.runner import ChainScanner, build_scanner

logger = logging.getLogger(__name__)


class Application:
    """Main application that runs both the API and the scanner."""

    def __init__(self):
        self.settings = get_settings()
        self.scanner: Optional[ChainScanner] = None
        self._shutdown_event = asyncio.Event()

    async def start(self):
        """Start all services."""
        # Configure logging
        log_level = logging.DEBUG if self.settings.debug else logging.INFO
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        logger.info("Starting trondeposit...")
        logger.info(f"Environment: {self.settings.environment}")

        try:
            validate_wallet_config(self.settings)
        except MasterSecretError as e:
            logger.critical(f"Refusing to start: {e}")
            sys.exit(1)

        # Initialize database
        await init_db()
        logger.info("Database initialized")

        self.scanner = build_scanner(self.settings)

        tasks = [
            asyncio.create_task(self._run_scanner()),
            asyncio.create_task(self._run_api()),
        ]
        logger.info("Scanner and API tasks created")

        # Wait for shutdown signal
        await self._shutdown_event.wait()

        self.scanner.stop()
        for task in tasks:
            task.cancel()

        # Wait for tasks to complete
        await asyncio.gather(*tasks, return_exceptions=True)

        # Cleanup
        await self._cleanup()

    async def _run_scanner(self):
        """Run the chain scanner loop."""
        try:
            await self.scanner.run()
        except asyncio.CancelledError:
            logger.info("Scanner cancelled")
        except Exception as e:
            logger.error(f"Scanner error: {e}")
            raise

    async def _run_api(self):
        """Run the FastAPI server."""
        try:
            app = create_app()
            config = uvicorn.Config(
                app,
                host=self.settings.api_host,
                port=self.settings.api_port,
                log_level="debug" if self.settings.debug else "info",
            )
            server = uvicorn.Server(config)
            logger.info(f"Starting API server on {self.settings.api_host}:{self.settings.api_port}")
            await server.serve()
        except asyncio.CancelledError:
            logger.info("API server cancelled")
        except Exception as e:
            logger.error(f"API error: {e}")
            raise

    async def _cleanup(self):
        """Cleanup resources."""
        logger.info("Cleaning up...")

        if self.scanner:
            await self.scanner.client.close()

        await close_db()
        logger.info("Cleanup complete")

    def shutdown(self):
        """Signal shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()


def main():
    """Main entry point."""
    app = Application()

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.shutdown)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        loop.close()


if __name__ == "__main__":
    main()
