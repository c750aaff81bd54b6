"""aiohttp server for happenings_engine."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from pathlib import Path
from typing import Any, Callable, Optional

from aiohttp import web

from ..core.config_manager import ConfigManager, get_config_value
from ..core.timezone_utils import SITE_TIMEZONE_ENV, now_utc
from ..domain.expander import ExpansionCaps
from ..domain.pipeline import OccurrencePipeline
from ..store import JsonEventStore
from .middleware import correlation_id_middleware
from .routes import register_api_routes

logger = logging.getLogger(__name__)


def _build_default_config_from_env() -> dict[str, Any]:
    return ConfigManager().load_full_config()


def _create_store(config: Any) -> JsonEventStore:
    data_path = get_config_value(config, "data_path")
    return JsonEventStore(Path(data_path) if data_path else None)


def _make_app(
    config: Any,
    store: JsonEventStore,
    time_provider: Callable[[], Any] = now_utc,
) -> web.Application:
    """Create aiohttp web application with routes wired to the store.

    Args:
        config: Server configuration (dict or object)
        store: Definition and override store
        time_provider: Callable returning the current aware UTC time

    Returns:
        Configured application
    """
    app = web.Application(middlewares=[correlation_id_middleware])

    pipeline = OccurrencePipeline(ExpansionCaps.from_settings(config))
    register_api_routes(
        app=app,
        config=config,
        store=store,
        pipeline=pipeline,
        time_provider=time_provider,
    )

    async def _on_shutdown(_app: web.Application) -> None:
        logger.info("Application shutdown requested; store at %s", store.path)

    app.on_shutdown.append(_on_shutdown)
    return app


async def _serve(
    config: Any,
    store: JsonEventStore,
    external_stop_event: Optional[asyncio.Event] = None,
) -> None:
    """Run the server until signalled to stop.

    Args:
        config: Server configuration object/dict.
        store: Definition and override store.
        external_stop_event: Optional event to signal shutdown. If provided,
            signal handlers will NOT be registered (caller owns signal handling).
    """
    stop_event = external_stop_event or asyncio.Event()

    app = _make_app(config, store)
    runner = web.AppRunner(app)
    await runner.setup()

    host = get_config_value(config, "server_bind", "0.0.0.0")  # nosec: B104 - default bind for dev; allow override via config/env
    port = int(get_config_value(config, "server_port", 8080))
    site = web.TCPSite(runner, host=host, port=port)
    try:
        await site.start()
    except OSError:
        logger.exception("Failed to start server on %s:%d", host, port)
        await runner.cleanup()
        raise

    logger.info("Server started on %s:%d (data: %s)", host, port, store.path)

    if external_stop_event is None:
        loop = asyncio.get_running_loop()

        def _on_signal() -> None:
            logger.info("Shutdown signal received")
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, _on_signal)
    else:
        logger.debug("Using external stop event - skipping signal handler registration")

    await stop_event.wait()
    logger.info("Stop event received, shutting down")
    await runner.cleanup()
    logger.info("Server shutdown complete")


def start_server(config: Any, store: Optional[JsonEventStore] = None) -> None:
    """Start the asyncio event loop and HTTP server.

    Args:
        config: dict or dataclass-like object with keys:
            - server_bind: host to bind (str)
            - server_port: port (int)
            - data_path: JSON store location (str)
            - site_timezone: IANA zone for date keys (str)
            - default_window_days / max_window_days: window sizes (int)
            - max_events / max_total_occurrences / max_per_event: caps (int)
            - debug_logging: enable debug logging for happenings_engine (bool)
        store: optional pre-built store (defaults to one at data_path)

    This function blocks the calling thread and runs until a SIGINT/SIGTERM is received.
    """
    from ..core.logging_config import configure_engine_logging

    debug_mode = bool(get_config_value(config, "debug_logging", False))
    configure_engine_logging(debug_mode=debug_mode)
    logger.info("Logging configuration applied: debug_mode=%s", debug_mode)

    site_tz = get_config_value(config, "site_timezone")
    if site_tz:
        os.environ.setdefault(SITE_TIMEZONE_ENV, site_tz)

    event_store = store or _create_store(config)
    try:
        asyncio.run(_serve(config, event_store))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
