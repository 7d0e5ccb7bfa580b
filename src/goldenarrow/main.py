"""Main entry point - runs the wallet API."""

import asyncio
import logging
import signal

import uvicorn

from goldenarrow.api.app import create_app
from goldenarrow.config import get_settings
from goldenarrow.errors import InvalidKeyMaterial

logger = logging.getLogger(__name__)


class Application:
    """Runs the API server until a shutdown signal arrives."""

    def __init__(self):
        self.settings = get_settings()
        self.api_server = None
        self._shutdown_event = asyncio.Event()

    async def start(self):
        """Start all services."""
        # Configure logging
        log_level = logging.DEBUG if self.settings.debug else logging.INFO
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        logger.info("Starting Golden Arrow wallet service...")
        logger.info(f"Environment: {self.settings.environment}")

        api_task = asyncio.create_task(self._run_api())
        shutdown_task = asyncio.create_task(self._shutdown_event.wait())

        done, _ = await asyncio.wait(
            {api_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
        )

        if shutdown_task in done and self.api_server is not None:
            self.api_server.should_exit = True

        shutdown_task.cancel()
        await asyncio.gather(api_task, shutdown_task, return_exceptions=True)

        # Surface startup failures such as an unparseable xpub
        if api_task.done() and not api_task.cancelled() and api_task.exception():
            raise api_task.exception()

        logger.info("Shutdown complete")

    async def _run_api(self):
        """Run the FastAPI server."""
        try:
            app = create_app(self.settings)
        except InvalidKeyMaterial as e:
            logger.error(f"Refusing to start: {e.message}")
            raise

        config = uvicorn.Config(
            app,
            host=self.settings.api_host,
            port=self.settings.api_port,
            log_level="debug" if self.settings.debug else "info",
        )
        self.api_server = uvicorn.Server(config)
        # Signals are handled by Application.shutdown
        self.api_server.install_signal_handlers = lambda: None
        logger.info(f"Starting API server on {self.settings.api_host}:{self.settings.api_port}")
        await self.api_server.serve()

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
