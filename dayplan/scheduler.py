"""Background workers started from the application lifespan.

``planning_worker`` sleeps until the wall clock passes the next local midnight
and plans tomorrow for every registered user. Users are planned
independently: a failure is logged and counted, and the run moves on.
Nothing is retried mid-cycle; the next attempt is the next midnight
(planning is idempotent per day, so a manual re-run is also safe).
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Optional, Union

from sqlmodel import select

from . import config
from .accounts import prune_abandoned_signups
from .db import async_session
from .models import User
from .planner import planner_tz, plan_tomorrow, tomorrow_start
from .utils import now_utc

logger = logging.getLogger(__name__)


@dataclass
class PlanningRunSummary:
    planned: int = 0
    skipped: int = 0
    failed: int = 0
    failed_user_ids: list[int] = field(default_factory=list)


def seconds_until_next_midnight(now: datetime, tz: Union[str, tzinfo, None] = None) -> float:
    return max(0.0, (tomorrow_start(now, tz) - now).total_seconds())


async def _registered_user_ids() -> list[int]:
    async with async_session() as sess:
        q = await sess.exec(
            select(User.id).where(User.password_hash != None).where(User.is_verified == True)
        )
        return list(q.all())


async def run_daily_planning(now: Optional[datetime] = None,
                             tz: Union[str, tzinfo, None] = None) -> PlanningRunSummary:
    """Run the planner for every registered user."""
    tz = planner_tz(tz)
    now = now or now_utc()
    summary = PlanningRunSummary()
    for user_id in await _registered_user_ids():
        try:
            result = await plan_tomorrow(user_id, now=now, tz=tz)
        except Exception:
            logger.exception('planning failed for user id=%s', user_id)
            summary.failed += 1
            summary.failed_user_ids.append(user_id)
            continue
        if result.planned:
            summary.planned += 1
        else:
            summary.skipped += 1
    logger.info('daily planning run: planned=%d skipped=%d failed=%d', summary.planned, summary.skipped, summary.failed)
    return summary


async def sleep_until(target: datetime, clock=now_utc, sleep=asyncio.sleep) -> datetime:
    """Sleep until the wall clock reaches ``target``; return the time on waking.

    The event loop sleeps on a monotonic clock, which can run ahead of or
    behind wall time, so the remaining delay is re-checked after each wake.
    """
    while True:
        now = clock()
        remaining = (target - now).total_seconds()
        if remaining <= 0:
            return now
        await sleep(remaining)


async def planning_worker(stop_event: asyncio.Event, tz: Union[str, tzinfo, None] = None):
    tz = planner_tz(tz)
    while not stop_event.is_set():
        try:
            now = now_utc()
            target = tomorrow_start(now, tz)
            logger.info('next planning run at %s (in %.0f seconds)', target.isoformat(),
                        seconds_until_next_midnight(now, tz))
            woke = await sleep_until(target)
            # the run at 00:00 plans the day after the one just started
            await run_daily_planning(now=woke, tz=tz)
        except asyncio.CancelledError:
            break
        except Exception:
            logger.exception('planning worker encountered an error')


async def signup_prune_worker(stop_event: asyncio.Event, interval: int = config.SIGNUP_PRUNE_INTERVAL_SECONDS):
    while not stop_event.is_set():
        try:
            await asyncio.sleep(interval)
            await prune_abandoned_signups()
        except asyncio.CancelledError:
            break
        except Exception:
            logger.exception('signup prune worker encountered an error')
