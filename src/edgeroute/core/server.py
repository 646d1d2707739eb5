"""aiohttp server hosting the edge router.

The server owns the aiohttp Application and its runner. Routing is attached
by the gateway as an application middleware, so this module only deals with
sockets, limits and shutdown.
"""

import logging
from collections.abc import Awaitable, Callable

from aiohttp import web

from edgeroute.core.config import ServerConfig

logger = logging.getLogger(__name__)


class HTTPServer:
    """Binds an aiohttp Application to a TCP socket.

    Cleanup callbacks run when the application shuts down, after the listener
    has stopped accepting connections.
    """

    def __init__(self, config: ServerConfig):
        self.config = config
        self.app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    @property
    def running(self) -> bool:
        return self._runner is not None

    def create_app(self) -> web.Application:
        """Create the aiohttp application with the configured limits.

        Returns:
            aiohttp Application instance
        """
        self.app = web.Application(
            client_max_size=self.config.client_max_size,
            handler_args={"keepalive_timeout": self.config.keepalive_timeout},
        )
        return self.app

    def add_cleanup(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Run a coroutine function when the application is cleaned up.

        Args:
            callback: Coroutine function without arguments
        """
        if self.app is None:
            raise RuntimeError("create_app() must be called before add_cleanup()")

        async def on_cleanup(app: web.Application) -> None:
            await callback()

        self.app.on_cleanup.append(on_cleanup)

    async def start(self) -> None:
        """Start listening.

        Raises:
            RuntimeError: If server is already running
        """
        if self.running:
            raise RuntimeError("Server is already running")
        app = self.app or self.create_app()

        # Access logging happens in the forwarding chains
        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, host=self.config.host, port=self.config.port)
        await site.start()
        self._runner = runner

        logger.info(
            f"Listening on http://{self.config.host}:{self.config.port}",
            extra={"host": self.config.host, "port": self.config.port},
        )

    async def stop(self) -> None:
        """Stop listening and run cleanup callbacks."""
        if self._runner is None:
            logger.warning("Server is not running")
            return

        runner, self._runner = self._runner, None
        # Stops every site, then fires on_shutdown and on_cleanup
        await runner.cleanup()
        logger.info("HTTP server stopped")
