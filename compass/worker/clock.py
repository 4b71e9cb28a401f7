"""Clock tick source and engine-state polling on an APScheduler loop."""
from __future__ import annotations

import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone
from time import perf_counter
from typing import Callable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from compass.api.client import CompassApiClient
from compass.api.errors import ApiError
from compass.core.config import settings
from compass.core.logging import configure_logging
from compass.observability.client import flush_opik, init_opik
from compass.observability.metrics import log_metric
from compass.services.elapsed_time import format_elapsed
from compass.services.query_cache import QueryCache
from compass.services.time_engine import TimeEngine

logger = logging.getLogger(__name__)

TickListener = Callable[[datetime], None]


class ClockTicker:
    """Fans a periodic "now" out to subscribers such as elapsed-time displays.

    Listeners are plain callables; the ticker never touches the network itself.
    When an engine is attached its state is additionally refreshed on the
    slower polling interval.
    """

    def __init__(
        self,
        *,
        engine: TimeEngine | None = None,
        scheduler: AsyncIOScheduler | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._engine = engine
        self._scheduler = scheduler or AsyncIOScheduler(timezone=settings.timezone)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._listeners: List[TickListener] = []

    @property
    def running(self) -> bool:
        return bool(getattr(self._scheduler, "running", False))

    def subscribe(self, listener: TickListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def tick(self, now: datetime | None = None) -> datetime:
        moment = now or self._clock()
        for listener in list(self._listeners):
            try:
                listener(moment)
            except Exception:
                logger.exception("Clock listener %r failed", listener)
        return moment

    async def poll_engine(self) -> None:
        if self._engine is None:
            return
        start = perf_counter()
        try:
            state = await self._engine.refresh()
        except ApiError as exc:
            logger.warning("Engine state poll failed: %s", exc.user_message)
            log_metric("time_engine.poll.failure", 1)
            return
        log_metric("time_engine.poll.latency_ms", (perf_counter() - start) * 1000)
        logger.debug("Engine state polled: active=%s", [d.value for d in state.active_dimensions()])

    def start(self) -> None:
        self._scheduler.add_job(
            self.tick,
            trigger="interval",
            seconds=max(1, settings.clock_tick_seconds),
            id="clock_tick",
            replace_existing=True,
        )
        if self._engine is not None:
            self._scheduler.add_job(
                self.poll_engine,
                trigger="interval",
                seconds=max(1, settings.engine_poll_seconds),
                id="engine_poll",
                replace_existing=True,
            )
        logger.info(
            "Clock registered (tz=%s, tick every %ss, engine poll every %ss, engine=%s)",
            settings.timezone,
            settings.clock_tick_seconds,
            settings.engine_poll_seconds,
            self._engine is not None,
        )
        self._scheduler.start()

    def shutdown(self) -> None:
        if self.running:
            self._scheduler.shutdown(wait=False)


def describe_state(engine: TimeEngine, now: datetime) -> str:
    state = engine.state
    if state is None:
        return "Engine state not loaded"
    parts = []
    for dimension in state.active_dimensions():
        active = state.for_dimension(dimension)
        parts.append(f"{dimension.label}: {active.category} ({format_elapsed(active.start, now)})")
    return "; ".join(parts) if parts else "No active time tracking"


async def run(stop_event: Optional[asyncio.Event] = None) -> None:
    """Poll the engine and log what is being tracked until ``stop_event`` is set."""
    stop_event = stop_event or asyncio.Event()
    async with CompassApiClient() as client:
        engine = TimeEngine(client, QueryCache())
        ticker = ClockTicker(engine=engine)
        ticker.subscribe(lambda now: logger.debug("%s", describe_state(engine, now)))

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, stop_event.set)
            except NotImplementedError:  # pragma: no cover - Windows event loops
                pass

        await ticker.poll_engine()
        ticker.start()
        try:
            await stop_event.wait()
        finally:
            logger.info("Clock worker shutting down")
            ticker.shutdown()
            flush_opik()


def main() -> None:
    configure_logging(log_level=settings.log_level, debug=settings.debug)
    init_opik()
    try:
        _validate_config()
    except ValueError as exc:
        logger.error("Invalid clock configuration: %s", exc)
        sys.exit(1)
    logger.info("%s clock worker starting (api=%s)", settings.app_name, settings.api_base_url)
    asyncio.run(run())


def _validate_config() -> None:
    if settings.clock_tick_seconds < 1:
        raise ValueError("CLOCK_TICK_SECONDS must be >= 1")
    if settings.clock_tick_seconds > 60:
        raise ValueError("CLOCK_TICK_SECONDS must be <= 60 so elapsed time refreshes every minute")
    if settings.engine_poll_seconds < 1:
        raise ValueError("ENGINE_POLL_SECONDS must be >= 1")
    if settings.task_page_size < 1:
        raise ValueError("TASK_PAGE_SIZE must be >= 1")


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
