import signal
import asyncio
import logging
from typing import Optional

import setproctitle
from hypercorn.asyncio import serve
from hypercorn.config import Config as HypercornConfig

from botpanel.local.config import effective_settings as config
from botpanel.web.server import create_app

log = logging.getLogger("asgi_server")


def build_hypercorn_config(host: str, port: int) -> HypercornConfig:
    """
    Builds the Hypercorn configuration for the panel.

    Hypercorn's own logs are routed through the application's logging setup
    instead of straight to stdout.
    """
    hypercorn_config = HypercornConfig()
    hypercorn_config.bind = [f"{host}:{port}"]
    hypercorn_config.accesslog = logging.getLogger("hypercorn.access")
    hypercorn_config.errorlog = logging.getLogger("hypercorn.error")
    hypercorn_config.loglevel = "info"
    return hypercorn_config


async def _serve_until_signalled(app, hypercorn_config: HypercornConfig) -> None:
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers; Ctrl+C raises KeyboardInterrupt there.
            pass
    await serve(app, hypercorn_config, shutdown_trigger=shutdown_event.wait)


def run_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """
    Runs the panel in the foreground until SIGINT/SIGTERM.

    The bots are children of this process; on exit the application's lifespan
    stops them before returning.

    :param host: Interface to bind. Defaults to `WEB_SERVER_HOST`.
    :param port: Port to bind. Defaults to `WEB_SERVER_PORT`.
    """
    setproctitle.setproctitle(config.PROCESS_TITLE)
    host = host or config.WEB_SERVER_HOST
    port = port or config.WEB_SERVER_PORT

    app = create_app()
    log.info(f"Bot panel listening on http://{host}:{port}")
    try:
        asyncio.run(_serve_until_signalled(app, build_hypercorn_config(host, port)))
    except KeyboardInterrupt:
        log.info("Interrupted. Bot panel stopped.")
