"""Plan tomorrow's tasks from a user's completion history.

This is an open-loop heuristic, not an optimal scheduler. One planning run
for one user:

1. split the user's todos into completed and pending;
2. build a weekday histogram (0 = Sunday) and per-category counts and total
   durations over completions that carry both timestamps;
3. derive per-category mean completion time and the most productive day;
4. find the start of tomorrow (local midnight in the planner timezone);
5. stop if anything is already due in ``[tomorrow, tomorrow + 24h)``;
6. move every pending high-priority todo to tomorrow;
7. top up with unscheduled medium-priority todos, in stored order, until
   ``ceil(max(3, completed / 7 + 1))`` is reached.

Step 5 makes a run idempotent per calendar day, so the midnight scheduler can
retry freely. Reads and writes are not atomic with respect to concurrent
requests from the same user; an overlapping create/complete may or may not be
seen by a run.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, Optional, Union

from sqlmodel import select

from . import config
from .db import async_session
from .models import Priority, Todo
from .utils import as_utc, isoformat_utc, now_utc, resolve_timezone

logger = logging.getLogger(__name__)

DAY = timedelta(hours=24)
MIN_TASKS_PER_DAY = 3
HISTORY_DAYS = 7


@dataclass
class CategoryStats:
    count: int = 0
    total_duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {'count': self.count, 'totalDurationMs': self.total_duration_ms}


@dataclass
class CompletionAnalysis:
    completion_by_day: list[int]
    completion_by_category: dict[str, CategoryStats]
    average_completion_time: dict[str, float]
    most_productive_day: int
    completed_count: int

    def to_dict(self) -> dict:
        return {
            'mostProductiveDay': self.most_productive_day,
            'completionByCategory': {k: v.to_dict() for k, v in self.completion_by_category.items()},
            'averageCompletionTime': dict(self.average_completion_time),
        }


@dataclass
class PlanResult:
    planned: bool
    tomorrow: datetime
    task_count: int = 0
    tasks_existing: int = 0
    optimal_task_count: Optional[int] = None
    analysis: Optional[CompletionAnalysis] = None
    assigned_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        if not self.planned:
            return {
                'planned': False,
                'message': 'Tasks for tomorrow already exist',
                'tasksExisting': self.tasks_existing,
            }
        analysis = self.analysis.to_dict() if self.analysis else {}
        analysis['optimalTaskCount'] = self.optimal_task_count
        return {
            'planned': True,
            'taskCount': self.task_count,
            'tomorrow': isoformat_utc(self.tomorrow),
            'analysis': analysis,
        }


def planner_tz(tz: Union[str, tzinfo, None]) -> tzinfo:
    if tz is None:
        return resolve_timezone(config.PLANNER_TIMEZONE)
    if isinstance(tz, str):
        return resolve_timezone(tz)
    return tz


def sunday_weekday(dt: datetime, tz: tzinfo) -> int:
    """Weekday of ``dt`` in ``tz`` with 0 = Sunday .. 6 = Saturday."""
    return (as_utc(dt).astimezone(tz).weekday() + 1) % 7


def analyze_history(todos: Iterable[Todo], tz: Union[str, tzinfo, None] = None) -> CompletionAnalysis:
    tz = planner_tz(tz)
    completed = [t for t in todos if t.completed]
    by_day = [0] * 7
    by_category: dict[str, CategoryStats] = {}
    for t in completed:
        if t.completed_at is None or t.created_at is None:
            continue
        by_day[sunday_weekday(t.completed_at, tz)] += 1
        stats = by_category.setdefault(t.category or 'general', CategoryStats())
        stats.count += 1
        # completed before created is a data anomaly; counted as-is
        stats.total_duration_ms += (as_utc(t.completed_at) - as_utc(t.created_at)) / timedelta(milliseconds=1)

    averages = {k: v.total_duration_ms / v.count for k, v in by_category.items() if v.count > 0}

    most_productive = 0
    highest = 0
    for day in range(7):
        if by_day[day] > highest:
            most_productive = day
            highest = by_day[day]

    return CompletionAnalysis(
        completion_by_day=by_day,
        completion_by_category=by_category,
        average_completion_time=averages,
        most_productive_day=most_productive,
        completed_count=len(completed),
    )


def tomorrow_start(now: datetime, tz: Union[str, tzinfo, None] = None) -> datetime:
    """Local midnight of the next calendar day, returned in UTC."""
    tz = planner_tz(tz)
    local_today = as_utc(now).astimezone(tz).date()
    start = datetime.combine(local_today + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc)


def optimal_task_count(completed_count: int) -> int:
    # whole-history count over a nominal week, not a true rolling window
    return math.ceil(max(MIN_TASKS_PER_DAY, completed_count / HISTORY_DAYS + 1))


def _in_window(dt: Optional[datetime], start: datetime, end: datetime) -> bool:
    if dt is None:
        return False
    dt = as_utc(dt)
    return start <= dt < end


async def plan_tomorrow(user_id: int, now: Optional[datetime] = None,
                        tz: Union[str, tzinfo, None] = None) -> PlanResult:
    tz = planner_tz(tz)
    now = now or now_utc()
    start = tomorrow_start(now, tz)
    end = start + DAY

    async with async_session() as sess:
        q = await sess.exec(select(Todo).where(Todo.owner_id == user_id).order_by(Todo.id))
        todos = list(q.all())
        analysis = analyze_history(todos, tz)

        existing = [t for t in todos if _in_window(t.due_date, start, end)]
        if existing:
            logger.info('plan_tomorrow user=%s: %d tasks already due %s; skipping', user_id, len(existing), start.isoformat())
            return PlanResult(planned=False, tomorrow=start, tasks_existing=len(existing), analysis=analysis)

        pending = [t for t in todos if not t.completed]
        assigned: list[int] = []

        high = [t for t in pending if t.priority == Priority.high]
        for t in high:
            t.due_date = start
            sess.add(t)
            assigned.append(t.id)

        optimal = optimal_task_count(analysis.completed_count)
        additional = max(0, optimal - len(high))
        if additional > 0:
            medium = [t for t in pending if t.priority == Priority.medium and t.due_date is None]
            for t in medium[:additional]:
                t.due_date = start
                sess.add(t)
                assigned.append(t.id)

        if assigned:
            await sess.commit()

        q2 = await sess.exec(
            select(Todo).where(Todo.owner_id == user_id).where(Todo.due_date != None)
        )
        task_count = sum(1 for t in q2.all() if _in_window(t.due_date, start, end))

    logger.info(
        'plan_tomorrow user=%s: assigned %d (high=%d, optimal=%d), %d due %s',
        user_id, len(assigned), len(high), optimal, task_count, start.isoformat(),
    )
    return PlanResult(
        planned=True,
        tomorrow=start,
        task_count=task_count,
        optimal_task_count=optimal,
        analysis=analysis,
        assigned_ids=assigned,
    )
