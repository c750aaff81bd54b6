"""happenings_engine - recurrence expansion and override resolution for community events.

The package keeps top-level imports light; the aiohttp server is imported
only when ``run_server`` is called.
"""

__version__ = "0.1.0"

from typing import Optional


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream to console.

    Installs a colorized console handler so startup messages are visible.
    Callers may adjust the level later (e.g. from config).

    Honors the HAPPENINGS_DEBUG environment variable (truthy values: "1",
    "true", "yes", "on"), which forces DEBUG verbosity.
    """
    import logging
    import os
    import sys

    from colorlog import ColoredFormatter

    debug_env = os.environ.get("HAPPENINGS_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    # Only configure basic handler if no handlers are present to avoid duplicate output.
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   logger.name: message, with only the level colorized
        fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
        log_colors = {
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=log_colors))
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        level = getattr(logging, level_name.upper(), logging.INFO)
    root.setLevel(level)
    logging.getLogger(__name__).debug(
        "Logging initialized at level %s", logging.getLevelName(level)
    )


def run_server(args: Optional[object] = None) -> None:
    """Start the happenings_engine HTTP server.

    Args:
        args: Optional command line arguments namespace containing --port and --data

    Behavior:
    - Initialize console logging early using HAPPENINGS_LOG_LEVEL (env) if present.
    - Load configuration from the .env file and environment.
    - Apply command line argument overrides to configuration.
    - Delegate to the server's start_server(cfg).
    """
    import importlib
    import logging
    import os

    _init_logging(os.environ.get("HAPPENINGS_LOG_LEVEL"))
    logger = logging.getLogger(__name__)

    server = importlib.import_module("happenings_engine.api.server")
    cfg = server._build_default_config_from_env()  # noqa: SLF001

    if args is not None:
        port = getattr(args, "port", None)
        if port is not None:
            cfg["server_port"] = int(port)
            logger.debug("Applied command line port override: %d", cfg["server_port"])
        data_path = getattr(args, "data", None)
        if data_path:
            cfg["data_path"] = str(data_path)
            logger.debug("Applied command line data path override: %s", data_path)

    cfg_level = cfg.get("log_level")
    if isinstance(cfg_level, str):
        logger.info("Applying configured log_level=%s", cfg_level)
        logging.getLogger().setLevel(getattr(logging, cfg_level.upper(), logging.INFO))

    server.start_server(cfg)
