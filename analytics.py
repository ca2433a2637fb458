"""
任務統計 (本月 vs 上個月)

五種計數,每一種本月和上個月各跑一次獨立的 count 查詢:
  - task:       當月建立的任務
  - assigned:   當月建立且指派給呼叫者 (member id)
  - incomplete: 當月建立且 status != DONE
  - completed:  當月建立且 status == DONE
  - overdue:    當月建立、status != DONE 且 due_date < now

月份依 TIMEZONE 設定的日曆切分 (預設 UTC)。
"""
from collections import namedtuple
from datetime import timedelta, timezone
from zoneinfo import ZoneInfo

from flask import current_app

from models import db, Task, TaskStatus, utcnow

MetricDelta = namedtuple('MetricDelta', ['count', 'difference'])

METRICS = ('task', 'assigned', 'completed', 'incomplete', 'overdue')


def month_bounds(now):
    """
    回傳 (本月開始, 下月開始, 上月開始)

    查詢用 start <= created_at < next_start
    """
    this_month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    next_month_start = (this_month_start + timedelta(days=32)).replace(day=1)
    last_month_start = (this_month_start - timedelta(days=1)).replace(day=1)
    return this_month_start, next_month_start, last_month_start


def local_month_bounds(now, timezone_name):
    """
    在 timezone_name 的日曆上切月,再換回 naive UTC 跟 created_at 比較

    Args:
        now: naive UTC
        timezone_name: IANA 時區,例如 'UTC' / 'Asia/Taipei'
    """
    tz = ZoneInfo(timezone_name)
    local_now = now.replace(tzinfo=timezone.utc).astimezone(tz).replace(tzinfo=None)
    return tuple(
        bound.replace(tzinfo=tz).astimezone(timezone.utc).replace(tzinfo=None)
        for bound in month_bounds(local_now)
    )


def _metric_filters(metric, member_id, now):
    if metric == 'task':
        return []
    if metric == 'assigned':
        return [Task.assignee_id == member_id]
    if metric == 'incomplete':
        return [Task.status != TaskStatus.DONE]
    if metric == 'completed':
        return [Task.status == TaskStatus.DONE]
    if metric == 'overdue':
        return [Task.status != TaskStatus.DONE, Task.due_date < now]
    raise ValueError(f"Unknown metric: {metric}")


def _count(scope_filter, metric, member_id, now, start, end):
    query = db.session.query(db.func.count(Task.id)).filter(
        scope_filter,
        Task.created_at >= start,
        Task.created_at < end,
        *_metric_filters(metric, member_id, now)
    )
    return query.scalar() or 0


def compute_task_analytics(scope_filter, member_id, now=None, timezone_name=None):
    """
    計算本月/上月的任務統計

    Args:
        scope_filter: SQLAlchemy 條件,例如 Task.workspace_id == workspace_id
        member_id: 呼叫者在該 workspace 的 member id
        now: 計算基準時間 (naive UTC),預設現在
        timezone_name: 切月用的時區,預設 app.config['TIMEZONE']

    Returns:
        dict: metric -> MetricDelta(count, difference)
    """
    now = now or utcnow()
    timezone_name = timezone_name or current_app.config.get('TIMEZONE', 'UTC')
    this_month_start, next_month_start, last_month_start = local_month_bounds(now, timezone_name)

    result = {}
    for metric in METRICS:
        this_month = _count(scope_filter, metric, member_id, now, this_month_start, next_month_start)
        last_month = _count(scope_filter, metric, member_id, now, last_month_start, this_month_start)
        result[metric] = MetricDelta(this_month, this_month - last_month)
    return result


def workspace_analytics(workspace_id, member_id, now=None, timezone_name=None):
    return compute_task_analytics(Task.workspace_id == workspace_id, member_id, now, timezone_name)


def project_analytics(project_id, member_id, now=None, timezone_name=None):
    return compute_task_analytics(Task.project_id == project_id, member_id, now, timezone_name)


def to_response(analytics):
    """攤平成前端用的 taskCount / taskDifference ... 格式"""
    data = {}
    for metric in METRICS:
        delta = analytics[metric]
        prefix = 'task' if metric == 'task' else f'{metric}Task'
        data[f'{prefix}Count'] = delta.count
        data[f'{prefix}Difference'] = delta.difference
    return data
