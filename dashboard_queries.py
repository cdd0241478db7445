"""
Dashboard queries against the Supabase table store.

Tables: ``checklist`` and ``delegation`` hold task rows, ``users`` holds staff.
Every query is scoped by the Viewer: plain users only ever see their own rows,
everyone else may narrow by staff name. Department filters apply to checklist
views, and to every table in the staff and date-range reports.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from parallel import gather
from task_utils import (
    completion_rate,
    is_before_today,
    is_submitted,
    month_date_range,
    page_bounds,
    paginate,
    parse_task_date,
    staff_with_access,
    summarize_staff,
    unique_departments,
)

logger = logging.getLogger(__name__)

CHECKLIST = 'checklist'
DELEGATION = 'delegation'
TASK_TABLES = (CHECKLIST, DELEGATION)
NOT_DONE_CHECKLIST = 'status.is.null,status.neq.Yes'
NOT_DONE_DELEGATION = 'status.is.null,status.neq.done'


class QueryError(Exception):
    pass


@dataclass(frozen=True)
class Viewer:
    role: str = ''
    user_name: str = ''

    @property
    def is_user(self) -> bool:
        return self.role == 'user' and bool(self.user_name)


def _today(today=None):
    return today or datetime.now().date()


def _start_of(d):
    return f"{d.isoformat() if hasattr(d, 'isoformat') else d}T00:00:00"


def _end_of(d):
    return f"{d.isoformat() if hasattr(d, 'isoformat') else d}T23:59:59"


def _selected(value):
    return bool(value) and value != 'all'


def _check_table(table):
    if table not in TASK_TABLES:
        raise ValueError(f"Unknown dashboard table: {table!r}")


def _execute(query, what):
    try:
        return query.execute()
    except Exception as e:
        logger.error("Error %s: %s", what, e)
        raise QueryError(f"Error {what}: {e}") from e


def _scope(query, viewer, table, staff=None, department=None, department_any_table=False):
    if viewer.is_user:
        query = query.eq('name', viewer.user_name)
    elif _selected(staff):
        query = query.eq('name', staff)
    if _selected(department) and (department_any_table or table == CHECKLIST):
        query = query.eq('department', department)
    return query


def _not_done(query, table):
    return query.or_(NOT_DONE_CHECKLIST if table == CHECKLIST else NOT_DONE_DELEGATION)


def _apply_view(query, table, view, today):
    if view == 'recent':
        query = query.gte('task_start_date', _start_of(today)).lte('task_start_date', _end_of(today))
        if table == CHECKLIST:
            query = _not_done(query, table)
    elif view == 'upcoming':
        tomorrow = today + timedelta(days=1)
        query = query.gte('task_start_date', _start_of(tomorrow)).lte('task_start_date', _end_of(tomorrow))
    elif view == 'overdue':
        query = query.lt('task_start_date', _start_of(today)).is_('submission_date', 'null')
        query = _not_done(query, table)
    else:
        query = query.lte('task_start_date', _end_of(today))
    return query


# -------------------------
# Task tabs
# -------------------------
def fetch_dashboard_data(client, viewer, table, staff=None, page=1, limit=50,
                         view='recent', department=None, today=None):
    _check_table(table)
    start, end = page_bounds(page, limit)
    query = (client.table(table)
             .select('*')
             .order('task_start_date', desc=True)
             .range(start, end))
    query = _scope(query, viewer, table, staff, department)
    query = _apply_view(query, table, view, _today(today))
    res = _execute(query, f"fetching {view} {table} tasks")
    return res.data or []


def get_dashboard_data_count(client, viewer, table, staff=None, view='recent',
                             department=None, today=None):
    _check_table(table)
    query = client.table(table).select('*', count='exact', head=True)
    query = _scope(query, viewer, table, staff, department)
    query = _apply_view(query, table, view, _today(today))
    res = _execute(query, f"counting {view} {table} tasks")
    return res.count or 0


# -------------------------
# Summary cards
# -------------------------
def count_total_tasks(client, viewer, table, staff=None, department=None, today=None):
    _check_table(table)
    query = (client.table(table)
             .select('*', count='exact', head=True)
             .lte('task_start_date', _end_of(_today(today))))
    query = _scope(query, viewer, table, staff, department)
    return _execute(query, "counting total tasks").count or 0


def count_completed_tasks(client, viewer, table, staff=None, department=None, today=None):
    _check_table(table)
    query = client.table(table).select('*', count='exact', head=True)
    if table == DELEGATION:
        query = query.not_.is_('submission_date', 'null')
    else:
        query = query.eq('status', 'Yes')
    query = query.lte('task_start_date', _end_of(_today(today)))
    query = _scope(query, viewer, table, staff, department)
    return _execute(query, "counting completed tasks").count or 0


def count_pending_tasks(client, viewer, table, staff=None, department=None, today=None):
    """Tasks starting today that are still open."""
    _check_table(table)
    t = _today(today)
    query = client.table(table).select('*', count='exact', head=True)
    if table == DELEGATION:
        query = query.is_('submission_date', 'null')
    else:
        query = _not_done(query, table)
    query = query.gte('task_start_date', _start_of(t)).lte('task_start_date', _end_of(t))
    query = _scope(query, viewer, table, staff, department)
    return _execute(query, "counting pending tasks").count or 0


def count_overdue_tasks(client, viewer, table, staff=None, department=None, today=None):
    _check_table(table)
    query = client.table(table).select('*', count='exact', head=True)
    if table == CHECKLIST:
        query = _not_done(query, table)
    query = query.is_('submission_date', 'null').lt('task_start_date', _start_of(_today(today)))
    query = _scope(query, viewer, table, staff, department)
    return _execute(query, "counting overdue tasks").count or 0


def get_dashboard_summary(client, viewer, table, staff=None, department=None, today=None):
    args = (client, viewer, table, staff, department, today)
    total, completed, pending, overdue = gather(
        lambda: count_total_tasks(*args),
        lambda: count_completed_tasks(*args),
        lambda: count_pending_tasks(*args),
        lambda: count_overdue_tasks(*args),
    )
    return {
        'total_tasks': total,
        'completed_tasks': completed,
        'pending_tasks': pending,
        'overdue_tasks': overdue,
        'completion_rate': completion_rate(completed, total),
    }


# -------------------------
# Staff performance
# -------------------------
def _month_query(client, viewer, table, columns, staff, department, selected_month, today):
    _check_table(table)
    start, end = month_date_range(selected_month, today)
    query = (client.table(table)
             .select(columns)
             .gte('task_start_date', _start_of(start))
             .lte('task_start_date', _end_of(end))
             .not_.is_('name', 'null'))
    return _scope(query, viewer, table, staff, department, department_any_table=True)


def fetch_staff_tasks_data(client, viewer, table, staff=None, department=None,
                           page=1, limit=20, selected_month=None, today=None):
    query = _month_query(client, viewer, table, '*', staff, department, selected_month, today)
    res = _execute(query, "fetching staff tasks")
    return paginate(summarize_staff(res.data or [], table), page, limit)


def get_staff_tasks_count(client, viewer, table, staff=None, department=None,
                          selected_month=None, today=None):
    query = _month_query(client, viewer, table, 'department, name', staff, department,
                         selected_month, today)
    res = _execute(query, "counting staff")
    return len({(row.get('department'), row.get('name')) for row in res.data or []})


# -------------------------
# Users
# -------------------------
def get_total_users_count(client, department=None):
    query = (client.table('users')
             .select('user_name, department', count='exact', head=True)
             .not_.is_('user_name', 'null')
             .neq('user_name', ''))
    if _selected(department):
        query = query.eq('department', department)
    return _execute(query, "counting users").count or 0


def get_unique_departments(client):
    query = (client.table('users')
             .select('department')
             .not_.is_('department', 'null')
             .neq('department', ''))
    res = _execute(query, "fetching departments")
    return unique_departments(res.data or [])


def get_staff_names_by_department(client, department=None):
    query = (client.table('users')
             .select('user_name, user_access, role')
             .not_.is_('user_name', 'null')
             .neq('user_name', ''))
    res = _execute(query, "fetching staff names")
    staff = [u for u in res.data or [] if (u.get('role') or '') != 'admin']
    return staff_with_access(staff, department)


def get_user_status(client, user_name):
    query = client.table('users').select('status').eq('user_name', user_name).limit(1)
    res = _execute(query, "checking user status")
    rows = res.data or []
    return rows[0].get('status') if rows else None


# -------------------------
# Checklist by date range
# -------------------------
def _date_window(query, start_date, end_date):
    if start_date:
        query = query.gte('task_start_date', _start_of(start_date))
    if end_date:
        query = query.lte('task_start_date', _end_of(end_date))
    return query


def _apply_status(query, status, today):
    if status == 'completed':
        query = query.eq('status', 'Yes')
    elif status == 'pending':
        query = query.or_(NOT_DONE_CHECKLIST).gte('task_start_date', _start_of(today))
    elif status == 'overdue':
        query = (query.or_(NOT_DONE_CHECKLIST)
                 .is_('submission_date', 'null')
                 .lt('task_start_date', _start_of(today)))
    return query


def fetch_checklist_by_date_range(client, viewer, start_date=None, end_date=None, staff=None,
                                  department=None, page=1, limit=50, status='all', today=None):
    start, end = page_bounds(page, limit)
    query = (client.table(CHECKLIST)
             .select('*')
             .order('task_start_date', desc=True)
             .range(start, end))
    query = _date_window(query, start_date, end_date)
    query = _scope(query, viewer, CHECKLIST, staff, department)
    query = _apply_status(query, status, _today(today))
    res = _execute(query, "fetching checklist by date range")
    return res.data or []


def get_checklist_date_range_count(client, viewer, start_date=None, end_date=None, staff=None,
                                   department=None, status='all', today=None):
    query = client.table(CHECKLIST).select('*', count='exact', head=True)
    query = _date_window(query, start_date, end_date)
    query = _scope(query, viewer, CHECKLIST, staff, department)
    query = _apply_status(query, status, _today(today))
    return _execute(query, "counting checklist by date range").count or 0


def get_checklist_date_range_stats(client, viewer, start_date=None, end_date=None, staff=None,
                                   department=None, today=None):
    t = _today(today)
    query = _date_window(client.table(CHECKLIST).select('*'), start_date, end_date)
    query = _scope(query, viewer, CHECKLIST, staff, department)
    tasks = _execute(query, "fetching checklist statistics").data or []

    total = len(tasks)
    completed = sum(1 for task in tasks if task.get('status') == 'Yes')
    pending = overdue = 0
    for task in tasks:
        if task.get('status') == 'Yes':
            continue
        started = parse_task_date(task.get('task_start_date'))
        if started is None:
            continue
        if started.date() >= t:
            pending += 1
        elif is_before_today(started, t) and not is_submitted(task):
            overdue += 1

    return {
        'total_tasks': total,
        'completed_tasks': completed,
        'pending_tasks': pending,
        'overdue_tasks': overdue,
        'completion_rate': completion_rate(completed, total),
        'date_range': {'start_date': start_date, 'end_date': end_date},
    }
