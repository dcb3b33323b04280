import pytest
from datetime import datetime, timedelta, timezone
from sqlmodel import select

from dayplan import planner
from dayplan.db import async_session
from dayplan.models import Priority, Todo
from dayplan.utils import as_utc
from fakes import unique_email

# Monday afternoon UTC; tomorrow starts 2026-10-20T00:00Z
NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)
TOMORROW = datetime(2026, 10, 20, tzinfo=timezone.utc)


def _done(completed_at, hours=2, category='work'):
    return Todo(
        owner_id=0,
        title='done',
        completed=True,
        category=category,
        created_at=completed_at - timedelta(hours=hours),
        completed_at=completed_at,
    )


async def _add(user_id, todos):
    async with async_session() as sess:
        for t in todos:
            t.owner_id = user_id
            sess.add(t)
        await sess.commit()
        for t in todos:
            await sess.refresh(t)
    return todos


async def _todos(user_id):
    async with async_session() as sess:
        q = await sess.exec(select(Todo).where(Todo.owner_id == user_id).order_by(Todo.id))
        return list(q.all())


def _due_tomorrow(todos):
    return [t for t in todos if t.due_date is not None and as_utc(t.due_date) == TOMORROW]


def test_analyze_history_counts_days_and_categories():
    tuesday = datetime(2026, 10, 13, 10, 0, tzinfo=timezone.utc)
    friday = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)
    todos = [
        _done(tuesday, hours=2),
        _done(tuesday, hours=4),
        _done(friday, hours=1, category='home'),
        Todo(owner_id=0, title='pending', completed=False),
    ]

    analysis = planner.analyze_history(todos, 'UTC')

    assert analysis.completed_count == 3
    assert analysis.completion_by_day == [0, 0, 2, 0, 0, 1, 0]
    assert analysis.most_productive_day == 2
    assert analysis.completion_by_category['work'].count == 2
    assert analysis.completion_by_category['work'].total_duration_ms == 6 * 3600 * 1000
    assert analysis.average_completion_time == {'work': 3 * 3600 * 1000, 'home': 3600 * 1000}


def test_analyze_history_skips_completions_without_timestamps():
    missing = Todo(owner_id=0, title='legacy', completed=True, completed_at=None)
    analysis = planner.analyze_history([missing], 'UTC')

    assert analysis.completed_count == 1
    assert analysis.completion_by_day == [0] * 7
    assert analysis.completion_by_category == {}
    assert analysis.average_completion_time == {}


def test_analyze_history_keeps_negative_durations():
    done = datetime(2026, 10, 13, 10, 0, tzinfo=timezone.utc)
    odd = Todo(owner_id=0, title='odd', completed=True, category='work',
               created_at=done + timedelta(minutes=1), completed_at=done)

    analysis = planner.analyze_history([odd], 'UTC')

    assert analysis.average_completion_time['work'] == -60 * 1000


def test_most_productive_day_tie_goes_to_earliest_weekday():
    friday = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)
    tuesday = datetime(2026, 10, 13, 12, 0, tzinfo=timezone.utc)
    analysis = planner.analyze_history([_done(friday), _done(tuesday)], 'UTC')
    assert analysis.most_productive_day == 2


def test_most_productive_day_without_history_is_sunday():
    assert planner.analyze_history([], 'UTC').most_productive_day == 0


def test_weekday_is_taken_in_planner_timezone():
    # Sunday evening in UTC is already Monday morning in Melbourne
    late_sunday = datetime(2026, 10, 18, 23, 30, tzinfo=timezone.utc)
    todos = [_done(late_sunday)]

    assert planner.analyze_history(todos, 'UTC').most_productive_day == 0
    assert planner.analyze_history(todos, 'Australia/Melbourne').most_productive_day == 1


def test_analysis_to_dict_uses_camel_case():
    tuesday = datetime(2026, 10, 13, 10, 0, tzinfo=timezone.utc)
    d = planner.analyze_history([_done(tuesday, hours=1)], 'UTC').to_dict()
    assert d == {
        'mostProductiveDay': 2,
        'completionByCategory': {'work': {'count': 1, 'totalDurationMs': 3600 * 1000}},
        'averageCompletionTime': {'work': 3600 * 1000},
    }


def test_tomorrow_start_utc():
    assert planner.tomorrow_start(NOW, 'UTC') == TOMORROW
    assert planner.tomorrow_start(datetime(2026, 10, 19, 23, 59, 59, tzinfo=timezone.utc), 'UTC') == TOMORROW


def test_tomorrow_start_local_timezone():
    # 15:00Z is 02:00 on the 20th in Melbourne (UTC+11)
    start = planner.tomorrow_start(NOW, 'Australia/Melbourne')
    assert start == datetime(2026, 10, 20, 13, 0, tzinfo=timezone.utc)


def test_unknown_timezone_falls_back_to_utc():
    assert planner.tomorrow_start(NOW, 'Not/AZone') == TOMORROW


@pytest.mark.parametrize('completed,expected', [(0, 3), (13, 3), (14, 3), (15, 4), (21, 4), (22, 5), (70, 11)])
def test_optimal_task_count(completed, expected):
    assert planner.optimal_task_count(completed) == expected


@pytest.mark.asyncio
async def test_plan_schedules_high_then_medium_up_to_optimal(make_user):
    user = await make_user(unique_email('planner'))
    tuesday = datetime(2026, 10, 13, 10, 0, tzinfo=timezone.utc)
    friday = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)
    history = [_done(tuesday) for _ in range(20)] + [_done(friday, hours=1, category='home')]
    await _add(user.id, history)

    high = Todo(title='overdue', priority=Priority.high, due_date=datetime(2026, 10, 1, tzinfo=timezone.utc))
    dated = Todo(title='dated', priority=Priority.medium, due_date=datetime(2026, 11, 1, tzinfo=timezone.utc))
    medium = [Todo(title=f'medium {i}', priority=Priority.medium) for i in range(5)]
    low = Todo(title='low', priority=Priority.low)
    await _add(user.id, [high, dated] + medium + [low])

    result = await planner.plan_tomorrow(user.id, now=NOW, tz='UTC')

    assert result.planned is True
    assert result.optimal_task_count == 4
    assert result.task_count == 4
    assert result.assigned_ids == [high.id] + [m.id for m in medium[:3]]
    body = result.to_dict()
    assert body['tomorrow'] == '2026-10-20T00:00:00.000Z'
    assert body['taskCount'] == 4
    assert body['analysis']['mostProductiveDay'] == 2
    assert body['analysis']['optimalTaskCount'] == 4
    assert body['analysis']['completionByCategory']['work']['count'] == 20
    assert body['analysis']['averageCompletionTime']['home'] == 3600 * 1000

    stored = await _todos(user.id)
    assert sorted(t.id for t in _due_tomorrow(stored)) == sorted(result.assigned_ids)
    by_id = {t.id: t for t in stored}
    assert as_utc(by_id[dated.id].due_date) == datetime(2026, 11, 1, tzinfo=timezone.utc)
    assert by_id[low.id].due_date is None
    assert by_id[medium[3].id].due_date is None

    again = await planner.plan_tomorrow(user.id, now=NOW, tz='UTC')
    assert again.to_dict() == {
        'planned': False,
        'message': 'Tasks for tomorrow already exist',
        'tasksExisting': 4,
    }


@pytest.mark.asyncio
async def test_all_high_priority_tasks_move_even_past_optimal(make_user):
    user = await make_user(unique_email('planner'))
    highs = [Todo(title=f'high {i}', priority=Priority.high) for i in range(5)]
    mediums = [Todo(title=f'medium {i}', priority=Priority.medium) for i in range(2)]
    await _add(user.id, highs + mediums)

    result = await planner.plan_tomorrow(user.id, now=NOW, tz='UTC')

    assert result.planned is True
    assert result.optimal_task_count == 3
    assert result.task_count == 5
    stored = await _todos(user.id)
    assert {t.title for t in _due_tomorrow(stored)} == {f'high {i}' for i in range(5)}


@pytest.mark.asyncio
async def test_completed_todos_are_never_scheduled(make_user):
    user = await make_user(unique_email('planner'))
    finished = Todo(title='finished', priority=Priority.high, completed=True,
                    completed_at=NOW - timedelta(hours=1), created_at=NOW - timedelta(hours=3))
    await _add(user.id, [finished])

    result = await planner.plan_tomorrow(user.id, now=NOW, tz='UTC')

    assert result.planned is True
    assert result.task_count == 0
    assert result.assigned_ids == []


@pytest.mark.asyncio
async def test_existing_task_late_tomorrow_blocks_planning(make_user):
    user = await make_user(unique_email('planner'))
    late = Todo(title='late', priority=Priority.low, due_date=TOMORROW + timedelta(hours=23))
    pending = Todo(title='urgent', priority=Priority.high)
    await _add(user.id, [late, pending])

    result = await planner.plan_tomorrow(user.id, now=NOW, tz='UTC')

    assert result.planned is False
    assert result.tasks_existing == 1
    stored = {t.id: t for t in await _todos(user.id)}
    assert stored[pending.id].due_date is None


@pytest.mark.asyncio
async def test_task_due_the_day_after_tomorrow_does_not_block(make_user):
    user = await make_user(unique_email('planner'))
    later = Todo(title='later', priority=Priority.low, due_date=TOMORROW + timedelta(hours=24))
    pending = Todo(title='urgent', priority=Priority.high)
    await _add(user.id, [later, pending])

    result = await planner.plan_tomorrow(user.id, now=NOW, tz='UTC')

    assert result.planned is True
    assert result.assigned_ids == [pending.id]
    assert result.task_count == 1
