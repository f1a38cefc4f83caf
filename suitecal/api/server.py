"""suitecal HTTP server: aiohttp app plus the background reminder dispatch loop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass
from typing import Any, Optional

from aiohttp import web

from ..calendar.conflicts import ConflictDetector
from ..calendar.free_busy import FreeBusyAggregator
from ..calendar.materializer import OccurrenceMaterializer
from ..calendar.rrule_expander import RecurrenceExpander
from ..calendar.series_service import SeriesService
from ..config_loader import Config
from ..core.config_manager import ConfigManager
from ..core.timezone_utils import now_utc
from ..reminders.scheduler import ReminderScheduler, dispatch_loop
from ..store.collaborators import LoggingNotifier, StaticDirectory
from ..store.memory_store import InMemoryDatastore
from ..store.protocols import Datastore, Directory, Notifier
from .middleware import correlation_id_middleware
from .routes import register_calendar_routes

logger = logging.getLogger(__name__)


@dataclass
class CalendarEngine:
    """The wired-up engine components one server instance uses."""

    config: Config
    datastore: Datastore
    materializer: OccurrenceMaterializer
    series_service: SeriesService
    conflict_detector: ConflictDetector
    free_busy: FreeBusyAggregator
    scheduler: ReminderScheduler


def build_engine(
    config: Config,
    datastore: Optional[Datastore] = None,
    notifier: Optional[Notifier] = None,
    directory: Optional[Directory] = None,
) -> CalendarEngine:
    """Wire engine components around the given collaborators.

    Missing collaborators fall back to the in-memory datastore (persisted to
    ``config.store_path`` when set), the logging notifier and an empty directory.
    """
    if datastore is None:
        datastore = InMemoryDatastore(config.store_path)
    expander = RecurrenceExpander(config.max_occurrences_per_expansion)
    materializer = OccurrenceMaterializer(datastore, expander=expander)
    scheduler = ReminderScheduler(
        datastore,
        notifier or LoggingNotifier(),
        lookahead_minutes=config.reminder_lookahead_minutes,
        all_day_hour=config.all_day_reminder_hour,
    )
    return CalendarEngine(
        config=config,
        datastore=datastore,
        materializer=materializer,
        series_service=SeriesService(datastore, config, materializer=materializer),
        conflict_detector=ConflictDetector(materializer),
        free_busy=FreeBusyAggregator(materializer, directory or StaticDirectory()),
        scheduler=scheduler,
    )


def _build_default_config_from_env() -> dict[str, Any]:
    """Build a config mapping from the .env file and ``SUITECAL_*`` variables."""
    return ConfigManager().load_full_config()


def _make_app(engine: CalendarEngine) -> web.Application:
    """Create the aiohttp application with calendar routes and correlation ids."""
    app = web.Application(middlewares=[correlation_id_middleware])
    register_calendar_routes(
        app=app,
        series_service=engine.series_service,
        conflict_detector=engine.conflict_detector,
        free_busy=engine.free_busy,
        scheduler=engine.scheduler,
        time_provider=now_utc,
        default_timezone=engine.config.default_timezone,
    )
    return app


async def _serve(
    engine: CalendarEngine,
    external_stop_event: asyncio.Event | None = None,
) -> None:
    """Run the HTTP server and dispatch loop until signalled to stop."""
    config = engine.config
    stop_event = external_stop_event or asyncio.Event()

    app = _make_app(engine)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.server_bind, config.server_port)
    await site.start()
    logger.info("Server started on http://%s:%d", config.server_bind, config.server_port)

    dispatcher = asyncio.create_task(
        dispatch_loop(engine.scheduler, config.dispatch_interval_seconds, stop_event)
    )

    if external_stop_event is None:
        loop = asyncio.get_running_loop()

        def _on_signal() -> None:
            logger.info("Shutdown signal received")
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, _on_signal)

    await stop_event.wait()
    logger.info("Stop event received, shutting down")

    dispatcher.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await dispatcher

    await runner.cleanup()
    logger.info("Server shutdown complete")


def start_server(config: Config, engine: Optional[CalendarEngine] = None) -> None:
    """Start the asyncio event loop, HTTP server and reminder dispatch loop.

    Blocks until SIGINT/SIGTERM.
    """
    from ..engine_logging import configure_logging

    configure_logging(debug_mode=config.log_level == "DEBUG")
    engine = engine or build_engine(config)
    try:
        asyncio.run(_serve(engine))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception:
        logger.exception("Server terminated unexpectedly")
        raise
