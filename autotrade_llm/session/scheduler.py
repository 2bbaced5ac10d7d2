"""
Market Scheduler: market-hours predicates and the continuous session loop.

Regular US equity hours are 09:30-16:00 America/New_York on weekdays;
exchange holidays are not modelled. The loop has exactly two suspension
points (sleep until open, sleep for interval) and honors stop requests only
between sessions.
"""

import asyncio
import logging
from datetime import datetime, time as dt_time, timedelta, timezone
from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

MARKET_TZ = ZoneInfo("America/New_York")
MARKET_OPEN = dt_time(9, 30)
MARKET_CLOSE = dt_time(16, 0)
MIN_SLEEP_SECONDS = 60.0


def _localize(now: Optional[datetime], tz: ZoneInfo) -> datetime:
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tz)


def is_market_open(now: Optional[datetime] = None, force_open: bool = False, tz: ZoneInfo = MARKET_TZ) -> bool:
    """
    True on weekdays between 09:30 (inclusive) and 16:00 (exclusive) exchange time.

    Naive datetimes are treated as UTC. ``force_open`` short-circuits to True
    for test environments.
    """
    if force_open:
        return True
    local = _localize(now, tz)
    if local.weekday() >= 5:
        return False
    return MARKET_OPEN <= local.time() < MARKET_CLOSE


def next_market_open(now: Optional[datetime] = None, tz: ZoneInfo = MARKET_TZ) -> datetime:
    """Next 09:30 exchange time strictly after ``now``, skipping weekends"""
    local = _localize(now, tz)
    candidate_day = local.date()
    if local.time() >= MARKET_OPEN:
        candidate_day += timedelta(days=1)
    while candidate_day.weekday() >= 5:
        candidate_day += timedelta(days=1)
    return datetime.combine(candidate_day, MARKET_OPEN, tzinfo=tz)


class MarketScheduler:
    """
    Runs one session at a time while the market is open.

    Closed market: sleep until the next open. Open market: run a session,
    then sleep the interval if the market will still be open afterwards,
    otherwise until the next open. A failed session is logged and retried on
    the same schedule.
    """

    def __init__(
        self,
        run_session: Callable[[], Awaitable[object]],
        interval_minutes: int = 30,
        force_open: bool = False,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        tz: ZoneInfo = MARKET_TZ,
    ):
        """
        Args:
            run_session: Coroutine function running one full session
            interval_minutes: Minutes between sessions while open (>= 5)
            force_open: Treat the market as always open
            clock: Returns the current aware datetime
            sleep: Awaitable sleep; defaults to a sleep interrupted by request_stop()
            tz: Exchange timezone
        """
        if interval_minutes < 5:
            raise ValueError(f"interval_minutes must be >= 5, got {interval_minutes}")
        self.run_session = run_session
        self.interval = timedelta(minutes=interval_minutes)
        self.force_open = force_open
        self.clock = clock
        self.tz = tz
        self._sleep_fn = sleep
        self._stop = asyncio.Event()
        self.sessions_run = 0
        self.sessions_failed = 0

    def request_stop(self):
        """Stop after the current session; interrupts any pending sleep"""
        logger.info("Stop requested; finishing after the current session")
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def _sleep(self, seconds: float):
        if self._sleep_fn is not None:
            await self._sleep_fn(seconds)
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _sleep_until_open(self):
        now = self.clock()
        opens_at = next_market_open(now, self.tz)
        seconds = max((opens_at - now).total_seconds(), MIN_SLEEP_SECONDS)
        logger.info(f"Market closed. Sleeping {seconds / 60:.1f} minutes until {opens_at.isoformat()}")
        await self._sleep(seconds)

    async def _sleep_for_interval(self):
        now = self.clock()
        if is_market_open(now + self.interval, self.force_open, self.tz):
            logger.info(f"Next session in {self.interval.total_seconds() / 60:.0f} minutes")
            await self._sleep(self.interval.total_seconds())
        else:
            await self._sleep_until_open()

    async def run_forever(self, max_sessions: Optional[int] = None):
        """
        Loop until stopped (or ``max_sessions`` sessions have been attempted).
        """
        logger.info(
            f"Continuous mode: interval {self.interval.total_seconds() / 60:.0f} minutes"
            f"{' (market forced open)' if self.force_open else ''}"
        )
        attempted = 0
        while not self.stopping:
            if max_sessions is not None and attempted >= max_sessions:
                break

            if not is_market_open(self.clock(), self.force_open, self.tz):
                await self._sleep_until_open()
                continue

            attempted += 1
            try:
                await self.run_session()
                self.sessions_run += 1
            except Exception as e:
                self.sessions_failed += 1
                logger.error(f"Session failed, retrying on next interval: {e}", exc_info=True)

            if self.stopping or (max_sessions is not None and attempted >= max_sessions):
                break
            await self._sleep_for_interval()

        logger.info(f"Scheduler stopped after {self.sessions_run} successful session(s)")
