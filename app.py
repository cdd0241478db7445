from flask import Flask, render_template, request, redirect, url_for, flash, jsonify, session, g
from flask_cors import CORS
from flask_wtf.csrf import CSRFProtect
from supabase import create_client
from datetime import datetime, timezone
from functools import wraps
import logging
import os
import time

from config import config
from logging_setup import setup_logging
from api_client import (
    ApiError,
    BackendClient,
    RequestTimeout,
    UnauthorizedError,
    resolve_api_base,
    token_expired,
)
from backend_api import AuthAPI, DelegationAPI, TaskAPI, UsersAPI, filter_users
import dashboard_queries as dq
from dashboard_queries import QueryError, Viewer
from departments import (
    DOER_NAMES,
    FREQUENCIES,
    GIVEN_BY_OPTIONS,
    blank_assignment,
    build_assignment,
    departments_for,
    validate_assignment,
)
from parallel import gather
from task_utils import available_months, filter_tasks, paginate, parse_and_format_date

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Load configuration based on environment
env = os.getenv('FLASK_ENV', 'development')
app.config.from_object(config.get(env, config['default']))

setup_logging(app.config['LOG_LEVEL'], app.config.get('LOG_DIR'))

# Verify secret key is set
if not app.config.get('SECRET_KEY'):
    raise ValueError("FLASK_SECRET_KEY must be set in environment variables for security")

app.config['API_BASE'] = resolve_api_base(app.config['API_BASE_URL'],
                                          app.config['API_FALLBACK_URL'],
                                          app.config['FORCE_HTTPS_API'])

# CSRF Protection
csrf = CSRFProtect(app)

CORS(app, resources={
    r"/api/*": {
        "origins": app.config['CORS_ORIGINS'] or False,
        "methods": ["GET", "POST", "PUT", "DELETE"],
        "allow_headers": ["Content-Type", "X-CSRFToken"],
        "supports_credentials": True
    }
})

TASK_TABLES = ('checklist', 'delegation')
DASHBOARD_VIEWS = ('recent', 'upcoming', 'overdue', 'all')
REST_VIEWS = ('recent', 'overdue', 'upcoming')
RANGE_STATUSES = ('all', 'completed', 'pending', 'overdue')
PUBLIC_ENDPOINTS = {'index', 'login', 'logout', 'healthz', 'static'}


# -------------------------
# Remote clients
# -------------------------
def get_supabase():
    """Shared table-store client, created on first use."""
    client = app.extensions.get('supabase')
    if client is None:
        url = app.config.get('SUPABASE_URL')
        key = app.config.get('SUPABASE_KEY')
        if not url or not key:
            raise QueryError("Please set SUPABASE_URL and SUPABASE_ANON_KEY environment variables")
        client = app.extensions['supabase'] = create_client(url, key)
    return client


def get_backend():
    """REST client for this request, carrying the session's bearer token."""
    if 'backend' not in g:
        override = app.extensions.get('backend_client')
        if override is not None:
            g.backend = override
        else:
            token = session.get('token')
            g.backend = BackendClient(app.config['API_BASE'],
                                      timeout_ms=app.config['API_TIMEOUT_MS'],
                                      token_getter=lambda: token)
    return g.backend


def current_viewer():
    return Viewer(role=session.get('role', ''), user_name=session.get('user_name', ''))


def _int_arg(name, default=1):
    try:
        return max(1, int(request.args.get(name, default)))
    except (TypeError, ValueError):
        return default


def _choice_arg(name, choices, default):
    value = (request.args.get(name) or '').strip()
    return value if value in choices else default


def _wants_json():
    return request.path.startswith('/api/')


def _end_session(message):
    session.clear()
    if _wants_json():
        return jsonify({'error': message}), 401
    flash(message)
    return redirect(url_for('login'))


# -------------------------
# Auth guards
# -------------------------
def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if 'user_name' not in session:
            if _wants_json():
                return jsonify({'error': 'Not authenticated'}), 401
            return redirect(url_for('login'))
        return f(*args, **kwargs)
    return decorated


def roles_required(*roles):
    def wrapper(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            if session.get('role') not in roles:
                if _wants_json():
                    return jsonify({'error': 'Forbidden'}), 403
                return redirect(url_for('dashboard_admin'))
            return f(*args, **kwargs)
        return login_required(decorated)
    return wrapper


@app.before_request
def enforce_active_session():
    """Log out expired tokens and users an admin has deactivated."""
    if request.endpoint in PUBLIC_ENDPOINTS or 'user_name' not in session:
        return None
    if token_expired(session.get('token')):
        return _end_session('Your session has expired. Please log in again.')

    interval = app.config['USER_STATUS_CHECK_SECONDS']
    last_checked = session.get('status_checked_at') or 0
    if time.time() - last_checked < interval:
        return None
    try:
        status = dq.get_user_status(get_supabase(), session['user_name'])
    except QueryError as e:
        logger.warning("Could not verify status for %s: %s", session['user_name'], e)
        return None
    if status != 'active':
        logger.info("Logging out %s (status=%s)", session['user_name'], status)
        return _end_session('Your account has been deactivated. You have been logged out.')
    session['status_checked_at'] = time.time()
    return None


@app.errorhandler(UnauthorizedError)
def handle_unauthorized(e):
    return _end_session('Your session has expired. Please log in again.')


# Jinja filter: raw task dates as DD/MM/YYYY[ HH:MM:SS]
@app.template_filter('indian_date')
def indian_date(value):
    if value in (None, ''):
        return '-'
    return parse_and_format_date(str(value))


# -------------------------
# Minimal routes (root + health)
# -------------------------
@app.route('/')
def index():
    if 'user_name' in session:
        return redirect(_home_for(session.get('role')))
    return redirect(url_for('login'))


@app.route('/healthz')
def healthz():
    return jsonify({'ok': True, 'time': datetime.now(timezone.utc).isoformat()}), 200


def _home_for(role):
    if role == 'user':
        return url_for('delegation')
    return url_for('dashboard_admin')


# -------------------------
# Auth routes
# -------------------------
@app.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'POST':
        username = (request.form.get('username') or '').strip()
        password = (request.form.get('password') or '').strip()
        if not username or not password:
            flash('Please enter both username and password')
            return render_template('login.html', username=username)
        try:
            body = AuthAPI(get_backend()).login(username, password)
        except ApiError as e:
            flash(str(e))
            return render_template('login.html', username=username)

        user = body['user']
        session.clear()
        session.permanent = True
        session['token'] = body.get('token') or body.get('access_token') or ''
        g.pop('backend', None)

        department = ''
        try:
            profile = AuthAPI(get_backend()).get_user_profile(user.get('id'))
            if isinstance(profile, dict) and isinstance(profile.get('data'), dict):
                profile = profile['data']
            if isinstance(profile, dict):
                department = profile.get('department') or profile.get('user_department') or ''
        except ApiError as e:
            logger.warning("Could not fetch user profile for %s: %s", username, e)

        session['user_id'] = user.get('id') or ''
        session['user_name'] = user.get('user_name') or username
        session['role'] = user.get('role') or ''
        session['email'] = user.get('email_id') or ''
        session['department'] = department
        session['status_checked_at'] = time.time()
        logger.info("%s logged in (role=%s)", session['user_name'], session['role'])
        flash(f"Welcome back, {session['user_name']}!")
        return redirect(_home_for(session['role']))
    return render_template('login.html', username='')


@app.route('/logout')
def logout():
    if 'token' in session:
        AuthAPI(get_backend()).logout()
    session.clear()
    return redirect(url_for('login'))


# -------------------------
# Dashboards
# -------------------------
@app.route('/dashboard')
@login_required
def dashboard():
    return redirect(url_for('dashboard_admin'))


def _dashboard_filters():
    return {
        'table': _choice_arg('type', TASK_TABLES, 'checklist'),
        'staff': request.args.get('staff') or 'all',
        'department': request.args.get('department') or 'all',
    }


def _pickers():
    """Department and staff dropdown options."""
    client = get_supabase()
    department = request.args.get('department') or 'all'
    departments, staff = gather(
        lambda: dq.get_unique_departments(client),
        lambda: dq.get_staff_names_by_department(client, department),
    )
    return departments, staff


@app.route('/dashboard/admin')
@login_required
def dashboard_admin():
    filters = _dashboard_filters()
    view = _choice_arg('view', DASHBOARD_VIEWS, 'recent')
    page = _int_arg('page')
    query = (request.args.get('q') or '').strip()
    limit = app.config['TASK_PAGE_SIZE']
    viewer = current_viewer()
    summary, tasks, total, departments, staff_names = None, [], 0, [], []
    try:
        client = get_supabase()
        table, staff, department = filters['table'], filters['staff'], filters['department']
        summary, raw, total = gather(
            lambda: dq.get_dashboard_summary(client, viewer, table, staff, department),
            lambda: dq.fetch_dashboard_data(client, viewer, table, staff, page, limit, view, department),
            lambda: dq.get_dashboard_data_count(client, viewer, table, staff, view, department),
        )
        # rows are already restricted to the tab by the store; only search here
        tasks = filter_tasks(raw, 'all', query)
        departments, staff_names = _pickers()
    except QueryError as e:
        flash(f'Error loading dashboard: {e}')
    return render_template('dashboard.html',
                           summary=summary,
                           tasks=tasks,
                           total=total,
                           page=page,
                           has_more=page * limit < total,
                           view=view,
                           views=DASHBOARD_VIEWS,
                           query=query,
                           departments=departments,
                           staff_names=staff_names,
                           **filters)


@app.route('/dashboard/staff')
@login_required
def staff_performance():
    filters = _dashboard_filters()
    months = available_months()
    month = request.args.get('month') or months[0]['value']
    page = _int_arg('page')
    limit = app.config['STAFF_PAGE_SIZE']
    viewer = current_viewer()
    rows, staff_count, users_count = [], 0, 0
    try:
        client = get_supabase()
        table, staff, department = filters['table'], filters['staff'], filters['department']
        rows, staff_count, users_count = gather(
            lambda: dq.fetch_staff_tasks_data(client, viewer, table, staff, department, page, limit, month),
            lambda: dq.get_staff_tasks_count(client, viewer, table, staff, department, month),
            lambda: dq.get_total_users_count(client, department),
        )
    except (QueryError, ValueError) as e:
        flash(f'Error loading staff data: {e}')
    return render_template('staff.html',
                           rows=rows,
                           staff_count=staff_count,
                           users_count=users_count,
                           months=months,
                           month=month,
                           page=page,
                           has_more=len(rows) == limit,
                           **filters)


@app.route('/dashboard/tasks')
@login_required
def task_tabs():
    view = _choice_arg('view', REST_VIEWS, 'recent')
    query = (request.args.get('q') or '').strip()
    page = _int_arg('page')
    limit = app.config['TASK_PAGE_SIZE']
    api = TaskAPI(get_backend())
    rows, counts = [], {'recent': 0, 'overdue': 0, 'not_done': 0}
    try:
        raw, counts = gather(lambda: api.get_tasks(view), api.get_task_counts)
        rows = filter_tasks(raw, view, query)
    except UnauthorizedError:
        raise
    except ApiError as e:
        flash(f'Error loading tasks: {e}')
    return render_template('tasks.html',
                           tasks=paginate(rows, page, limit),
                           total=len(rows),
                           page=page,
                           has_more=page * limit < len(rows),
                           counts=counts,
                           view=view,
                           query=query)


@app.route('/dashboard/checklist-range')
@login_required
def checklist_range():
    start_date = (request.args.get('start') or '').strip() or None
    end_date = (request.args.get('end') or '').strip() or None
    status = _choice_arg('status', RANGE_STATUSES, 'all')
    staff = request.args.get('staff') or 'all'
    department = request.args.get('department') or 'all'
    page = _int_arg('page')
    limit = app.config['TASK_PAGE_SIZE']
    viewer = current_viewer()
    tasks, total, stats = [], 0, None
    try:
        client = get_supabase()
        tasks, total, stats = gather(
            lambda: dq.fetch_checklist_by_date_range(client, viewer, start_date, end_date, staff,
                                                     department, page, limit, status),
            lambda: dq.get_checklist_date_range_count(client, viewer, start_date, end_date, staff,
                                                      department, status),
            lambda: dq.get_checklist_date_range_stats(client, viewer, start_date, end_date, staff,
                                                      department),
        )
    except QueryError as e:
        flash(f'Error loading checklist: {e}')
    return render_template('checklist_range.html',
                           tasks=filter_tasks(tasks, 'all'),
                           total=total,
                           stats=stats,
                           page=page,
                           has_more=page * limit < total,
                           start=start_date or '',
                           end=end_date or '',
                           status=status,
                           statuses=RANGE_STATUSES,
                           staff=staff,
                           department=department)


# -------------------------
# Task assignment
# -------------------------
@app.route('/dashboard/assign-task', methods=['GET', 'POST'])
@login_required
def assign_task():
    role = session.get('role', '')
    department = session.get('department', '')
    form = blank_assignment(role, department)
    error = ''
    status = 200
    if request.method == 'POST':
        form = build_assignment(request.form, role, department)
        error = validate_assignment(form)
        if not error:
            try:
                TaskAPI(get_backend()).assign_task(form)
                flash('Task submitted successfully.')
                return redirect(url_for('assign_task'))
            except RequestTimeout:
                error = 'Task is being processed. Please verify in a moment.'
            except UnauthorizedError:
                raise
            except ApiError as e:
                error = str(e) or 'Failed to submit task'
        status = 400
    return render_template('assign_task.html',
                           form=form,
                           error=error,
                           departments=departments_for(role, department),
                           locked_department=(role.lower() == 'user' and bool(department)),
                           given_by_options=GIVEN_BY_OPTIONS,
                           doer_names=DOER_NAMES,
                           frequencies=FREQUENCIES), status


# -------------------------
# Delegation (my tasks)
# -------------------------
def _submitted_rows(form, files):
    rows = []
    for task_id in form.getlist('task_ids'):
        row = {
            'task_id': task_id,
            'status': form.get(f'status_{task_id}') or 'Yes',
            'remark': form.get(f'remark_{task_id}') or '',
            'attachment': 'No',
        }
        image = files.get(f'image_{task_id}')
        if image is not None and image.filename:
            row['image_file'] = image
            row['attachment'] = 'Yes'
        elif form.get(f'image_url_{task_id}'):
            row['image_url'] = form.get(f'image_url_{task_id}')
            row['attachment'] = 'Yes'
        rows.append(row)
    return rows


@app.route('/dashboard/delegation', methods=['GET', 'POST'])
@login_required
def delegation():
    api = DelegationAPI(get_backend())
    if request.method == 'POST':
        rows = _submitted_rows(request.form, request.files)
        if not rows:
            flash('Select at least one task to submit')
            return redirect(url_for('delegation'))
        result = api.submit_tasks(rows)
        for err in result['failed']:
            if isinstance(err, UnauthorizedError):
                raise err
        ok, failed = len(result['successful']), len(result['failed'])
        logger.info("%s submitted %s task(s), %s failed", session.get('user_name'), ok, failed)
        if failed:
            flash(f'{ok} task(s) submitted, {failed} failed: {result["failed"][0]}')
        else:
            flash(f'{ok} task(s) submitted successfully')
        return redirect(url_for('delegation'))

    filters = {k: v for k, v in request.args.items() if v and k in ('start_date', 'end_date', 'name')}
    pending, history = [], []
    try:
        pending, history = gather(lambda: api.get_pending_tasks(filters),
                                  lambda: api.get_history_tasks(filters))
    except UnauthorizedError:
        raise
    except ApiError as e:
        flash(f'Error loading tasks: {e}')
    return render_template('delegation.html',
                           pending=filter_tasks(pending, 'all'),
                           history=filter_tasks(history, 'all'),
                           filters=filters)


@app.route('/dashboard/delegation/<task_id>/confirm', methods=['POST'])
@login_required
def confirm_task(task_id):
    try:
        DelegationAPI(get_backend()).confirm_task(task_id)
        flash(f'Task {task_id} confirmed')
    except UnauthorizedError:
        raise
    except ApiError as e:
        flash(f'Error confirming task: {e}')
    return redirect(url_for('delegation'))


# -------------------------
# Settings (user management)
# -------------------------
USER_FORM_FIELDS = ('user_name', 'email_id', 'number', 'employee_id', 'role',
                    'status', 'user_access', 'department', 'password')


def _user_form():
    return {k: (request.form.get(k) or '').strip() for k in USER_FORM_FIELDS}


@app.route('/dashboard/setting')
@roles_required('admin')
def settings():
    name_filter = (request.args.get('q') or '').strip()
    users = []
    try:
        users = UsersAPI(get_backend()).list_users()
    except UnauthorizedError:
        raise
    except ApiError as e:
        logger.error("Error fetching users: %s", e)
        flash('Failed to fetch users')
    return render_template('settings.html',
                           users=filter_users(users, name_filter),
                           name_filter=name_filter)


@app.route('/dashboard/setting/users', methods=['POST'])
@roles_required('admin')
def create_user():
    data = _user_form()
    if not data['user_name'] or not data['password']:
        flash('Username and password are required')
        return redirect(url_for('settings'))
    try:
        UsersAPI(get_backend()).create_user(data)
        flash(f'User "{data["user_name"]}" created')
    except UnauthorizedError:
        raise
    except ApiError as e:
        flash(f'Failed to create user: {e}')
    return redirect(url_for('settings'))


@app.route('/dashboard/setting/users/<user_id>', methods=['POST'])
@roles_required('admin')
def update_user(user_id):
    data = _user_form()
    if not data['user_name']:
        flash('Username is required')
        return redirect(url_for('settings'))
    try:
        UsersAPI(get_backend()).update_user(user_id, data)
        flash(f'User "{data["user_name"]}" updated')
    except UnauthorizedError:
        raise
    except ApiError as e:
        flash(f'Failed to update user: {e}')
    return redirect(url_for('settings'))


@app.route('/dashboard/setting/users/<user_id>/delete', methods=['POST'])
@roles_required('admin')
def delete_user(user_id):
    try:
        UsersAPI(get_backend()).delete_user(user_id)
        flash('User deleted')
    except UnauthorizedError:
        raise
    except ApiError as e:
        logger.error("Error deleting user %s: %s", user_id, e)
        flash('Failed to delete user')
    return redirect(url_for('settings'))


# -------------------------
# JSON endpoints
# -------------------------
@app.route('/api/task-counts')
@login_required
def api_task_counts():
    try:
        return jsonify(TaskAPI(get_backend()).get_task_counts())
    except UnauthorizedError:
        raise
    except ApiError as e:
        return jsonify({'error': str(e)}), e.status or 502


@app.route('/api/dashboard/summary')
@login_required
def api_dashboard_summary():
    filters = _dashboard_filters()
    try:
        summary = dq.get_dashboard_summary(get_supabase(), current_viewer(), filters['table'],
                                           filters['staff'], filters['department'])
        return jsonify(summary)
    except QueryError as e:
        return jsonify({'error': str(e)}), 502


@app.route('/api/dashboard/overview')
@login_required
def api_dashboard_overview():
    try:
        return jsonify(TaskAPI(get_backend()).get_summary())
    except UnauthorizedError:
        raise
    except ApiError as e:
        return jsonify({'error': str(e)}), e.status or 502


# Error handlers
@app.errorhandler(404)
def page_not_found(e):
    if _wants_json():
        return jsonify({'error': 'Not found'}), 404
    return render_template('404.html'), 404


@app.errorhandler(500)
def internal_server_error(e):
    if _wants_json():
        return jsonify({'error': 'Internal server error'}), 500
    return render_template('500.html'), 500


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=app.config.get('DEBUG', False))
