"""
Task classification helpers shared by every dashboard page.

All date-dependent helpers accept an optional ``today`` so callers (and tests)
can pin the reference day.
"""
import re
from datetime import datetime, date, timedelta

COMPLETED_STATUSES = {
    'checklist': {'yes', 'completed'},
    'delegation': {'done', 'completed'},
}

_ISO_PREFIX = re.compile(r'^\d{4}-\d{2}-\d{2}')
_SHORT_OFFSET = re.compile(r'(\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)([+-]\d{2})$')
_COMPACT_OFFSET = re.compile(r'(\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)([+-]\d{2})(\d{2})$')
_FRACTION = re.compile(r'(?<=\d{2}:\d{2}:\d{2})\.(\d+)')
_WHITESPACE = re.compile(r'\s+')

MONTH_NAMES = ['January', 'February', 'March', 'April', 'May', 'June',
               'July', 'August', 'September', 'October', 'November', 'December']


def _today(today=None):
    return today or datetime.now().date()


def _fraction_to_micros(match):
    return '.' + match.group(1)[:6].ljust(6, '0')


def _normalize_iso(value):
    s = value.strip()
    if s.endswith('Z') or s.endswith('z'):
        s = s[:-1] + '+00:00'
    # fromisoformat before 3.11 only takes 3 or 6 fraction digits and "+HH:MM" offsets
    s = _FRACTION.sub(_fraction_to_micros, s)
    s = _COMPACT_OFFSET.sub(r'\1\2:\3', s)
    return _SHORT_OFFSET.sub(r'\1\2:00', s)


def _parse_iso(value):
    try:
        dt = datetime.fromisoformat(_normalize_iso(value))
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt


def _parse_indian(value):
    parts = value.strip().split()
    pieces = parts[0].split('/')
    if len(pieces) != 3:
        return None
    try:
        day, month, year = (int(p) for p in pieces)
    except ValueError:
        return None
    hours = minutes = seconds = 0
    if len(parts) > 1:
        clock = parts[1].split(':')
        if len(clock) >= 2:
            try:
                hours = int(clock[0])
                minutes = int(clock[1])
                seconds = int(clock[2]) if len(clock) > 2 else 0
            except ValueError:
                return None
    try:
        return datetime(year, month, day, hours, minutes, seconds)
    except ValueError:
        return None


def parse_task_date(value):
    """Parse a task timestamp into a naive local datetime.

    Accepts datetime/date objects, ISO strings (with or without time and
    offset) and DD/MM/YYYY[ HH:MM[:SS]] strings. Returns None when the value
    cannot be understood.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        return None
    if _ISO_PREFIX.match(value.strip()):
        return _parse_iso(value)
    if '/' in value:
        return _parse_indian(value)
    return None


def _date_of(value):
    dt = parse_task_date(value)
    return dt.date() if dt else None


def is_today(value, today=None) -> bool:
    d = _date_of(value)
    return d is not None and d == _today(today)


def is_tomorrow(value, today=None) -> bool:
    d = _date_of(value)
    return d is not None and d == _today(today) + timedelta(days=1)


def is_before_today(value, today=None) -> bool:
    d = _date_of(value)
    return d is not None and d < _today(today)


def format_indian_date(dt) -> str:
    if not isinstance(dt, (datetime, date)):
        return ''
    return dt.strftime('%d/%m/%Y')


def format_indian_datetime(dt) -> str:
    if not isinstance(dt, datetime):
        return format_indian_date(dt)
    return dt.strftime('%d/%m/%Y %H:%M:%S')


def parse_and_format_date(value) -> str:
    """Render a raw date string as DD/MM/YYYY, adding the time when it is not midnight."""
    if not value or not isinstance(value, str):
        return ''
    dt = parse_task_date(value)
    if dt is None:
        return value
    if dt.hour or dt.minute or dt.second:
        return format_indian_datetime(dt)
    return format_indian_date(dt)


# -------------------------
# Status predicates
# -------------------------
def is_submitted(task) -> bool:
    value = task.get('submission_date')
    if value is None:
        return False
    return bool(str(value).strip())


def is_completed(task, table='checklist') -> bool:
    status = (task.get('status') or '').strip().lower()
    return status in COMPLETED_STATUSES.get(table, set())


def task_status_label(task) -> str:
    if is_submitted(task) or task.get('status') == 'Yes':
        return 'Completed'
    return 'Pending'


def classify_task(task, today=None) -> str:
    if is_submitted(task) or task.get('status') == 'Yes':
        return 'completed'
    if is_before_today(task.get('task_start_date'), today):
        return 'overdue'
    return 'pending'


def is_overdue(task, today=None) -> bool:
    """Start date strictly before today and nothing submitted yet."""
    return is_before_today(task.get('task_start_date'), today) and not is_submitted(task)


def is_pending_today(task, today=None) -> bool:
    return is_today(task.get('task_start_date'), today) and not is_submitted(task)


def is_done_on_time(task) -> bool:
    submitted = _date_of(task.get('submission_date'))
    started = _date_of(task.get('task_start_date'))
    if submitted is None or started is None:
        return False
    return submitted <= started


def completion_rate(completed, total) -> float:
    if not total:
        return 0.0
    return round(completed / total * 100, 1)


# -------------------------
# Staff performance
# -------------------------
def _score(part, whole):
    return round(part / whole * 100 - 100, 2)


def staff_slug(name) -> str:
    return _WHITESPACE.sub('-', name or '').lower()


def summarize_staff(tasks, table='checklist'):
    """Aggregate task rows per (department, name) into performance rows."""
    summary = {}
    for task in tasks:
        key = (task.get('department'), task.get('name'))
        row = summary.get(key)
        if row is None:
            row = summary[key] = {
                'department': task.get('department'),
                'name': task.get('name'),
                'total_tasks': 0,
                'total_completed_tasks': 0,
                'total_done_on_time': 0,
            }
        row['total_tasks'] += 1
        if is_completed(task, table):
            row['total_completed_tasks'] += 1
            if is_done_on_time(task):
                row['total_done_on_time'] += 1

    results = []
    for row in summary.values():
        total = row['total_tasks']
        completed = row['total_completed_tasks']
        completion_score = _score(completed, total) if total else -100
        if completed:
            ontime_score = _score(row['total_done_on_time'], completed)
        else:
            ontime_score = -100 if total else 0
        results.append(dict(row,
                            id=staff_slug(row['name']),
                            completion_score=completion_score,
                            ontime_score=ontime_score))
    return results


# -------------------------
# Months
# -------------------------
def _last_day(year, month):
    if month == 12:
        return 31
    return (date(year, month + 1, 1) - timedelta(days=1)).day


def month_date_range(selected_month=None, today=None):
    """Return (first_day, last_day) ISO strings for 'YYYY-MM' or the current month."""
    if selected_month:
        year, month = (int(p) for p in selected_month.split('-')[:2])
    else:
        t = _today(today)
        year, month = t.year, t.month
    start = date(year, month, 1)
    end = date(year, month, _last_day(year, month))
    return start.isoformat(), end.isoformat()


def available_months(count=12, today=None):
    t = _today(today)
    year, month = t.year, t.month
    months = []
    for _ in range(count):
        months.append({
            'value': f"{year}-{month:02d}",
            'label': f"{MONTH_NAMES[month - 1]} {year}",
        })
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    return months


# -------------------------
# Display rows, search and paging
# -------------------------
def normalize_task(task, today=None):
    raw_start = task.get('task_start_date')
    raw_submission = task.get('submission_date')
    return {
        'id': task.get('task_id', task.get('id')),
        'title': task.get('task_description') or '',
        'assigned_to': task.get('name') or 'Unassigned',
        'department': task.get('department') or 'N/A',
        'task_start_date': parse_and_format_date(raw_start),
        'submission_date': parse_and_format_date(raw_submission) if raw_submission else None,
        'status': task_status_label(task),
        'state': classify_task(task, today),
        'frequency': task.get('frequency') or 'one-time',
        'rating': task.get('color_code_for') or 0,
        'remarks': task.get('remark') or '',
        'raw_task_start_date': raw_start,
        'raw_submission_date': raw_submission,
    }


SEARCH_FIELDS = ('title', 'assigned_to', 'remarks', 'task_start_date', 'status')


def matches_search(row, query) -> bool:
    q = (query or '').strip().lower()
    if not q:
        return True
    if row.get('id') is not None and q in str(row['id']).lower():
        return True
    return any(q in str(row.get(field) or '').lower() for field in SEARCH_FIELDS)


def filter_tasks(tasks, view, query='', today=None):
    """Normalise raw rows, apply the search box, then the tab restriction."""
    rows = []
    for task in tasks or []:
        row = normalize_task(task, today)
        if not matches_search(row, query):
            continue
        if view == 'recent' and not is_today(row['raw_task_start_date'], today):
            continue
        if view == 'overdue' and not is_overdue(task, today):
            continue
        rows.append(row)
    return rows


def page_bounds(page=1, limit=50):
    """Inclusive (from, to) row indexes for a 1-based page."""
    page = max(1, int(page or 1))
    start = (page - 1) * limit
    return start, start + limit - 1


def paginate(items, page=1, limit=50):
    start, end = page_bounds(page, limit)
    return list(items)[start:end + 1]


def unique_departments(rows):
    seen = {}
    for row in rows:
        dept = (row.get('department') or '').strip()
        if dept:
            seen.setdefault(dept, None)
    return sorted(seen, key=str.lower)


def staff_with_access(users, department=None):
    """User names, optionally limited to those whose user_access lists the department."""
    names = []
    wanted = (department or '').strip().lower()
    for user in users:
        if wanted and wanted != 'all':
            access = [d.strip().lower() for d in (user.get('user_access') or '').split(',')]
            if wanted not in access:
                continue
        name = user.get('user_name')
        if name and name not in names:
            names.append(name)
    return names
