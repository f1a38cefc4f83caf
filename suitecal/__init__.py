"""suitecal - calendar recurrence, availability and reminder engine.

Expands recurring series into timezone-correct occurrences, applies
per-occurrence overrides, answers conflict and free/busy queries, and
dispatches reminders at most once. ``python -m suitecal`` serves the engine
over HTTP.
"""

__version__ = "0.1.0"

from typing import Optional


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream colorized output to the console.

    Honors SUITECAL_DEBUG (truthy values: "1", "true", "yes", "on"), which
    forces DEBUG verbosity regardless of ``level_name``.
    """
    import logging
    import os
    import sys

    from colorlog import ColoredFormatter

    debug_env = os.environ.get("SUITECAL_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    # Only configure a handler if none is present to avoid duplicate output
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   [request-id] logger.name: message
        fmt = (
            "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s "
            "[%(request_id)s] %(name)s: %(message)s"
        )
        log_colors = {
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=log_colors))

        from .engine_logging import CorrelationIdFilter

        handler.addFilter(CorrelationIdFilter())
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        level = getattr(logging, level_name.upper(), logging.INFO)
    root.setLevel(level)
    logging.getLogger(__name__).debug(
        "Logging initialized at level %s", logging.getLevelName(level)
    )


def _resolve_config(args: Optional[object] = None):  # type: ignore[no-untyped-def]
    """Merge file config, ``SUITECAL_*`` environment values and CLI overrides."""
    import dataclasses
    import logging

    from .api.server import _build_default_config_from_env
    from .config_loader import Config, load_config

    logger = logging.getLogger(__name__)

    file_cfg = load_config(getattr(args, "config", None))
    merged = dataclasses.asdict(file_cfg)
    merged.update(_build_default_config_from_env())

    port = getattr(args, "port", None)
    if port is not None:
        merged["server_port"] = int(port)
        logger.debug("Applied command line port override: %d", int(port))

    return Config.from_dict(merged)


def run_server(args: Optional[object] = None) -> None:
    """Start the suitecal server, or run a single dispatch tick.

    Args:
        args: Optional namespace with ``port``, ``config`` and ``dispatch_once``
    """
    import logging
    import os

    _init_logging(os.environ.get("SUITECAL_LOG_LEVEL"))
    logger = logging.getLogger(__name__)

    from .api.server import build_engine, start_server

    cfg = _resolve_config(args)
    logging.getLogger().setLevel(getattr(logging, cfg.log_level, logging.INFO))
    logger.debug(
        "Resolved configuration (diagnostic): bind=%s port=%d store=%s",
        cfg.server_bind,
        cfg.server_port,
        cfg.store_path,
    )

    if getattr(args, "dispatch_once", False):
        engine = build_engine(cfg)
        report = engine.scheduler.run_dispatch_tick()
        logger.info("Dispatch tick complete: %s", report.to_dict())
        return

    logger.info("Starting suitecal server")
    start_server(cfg)
