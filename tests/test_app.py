# tests/test_app.py

import io
from datetime import date, datetime, timedelta, timezone

import jwt

from api_client import RequestTimeout, UnauthorizedError
from backend_api import HISTORY_URL, PENDING_URL, TASK_BASE

from .conftest import login_as
from .fakes import failing


def _today_at(hour):
    return f'{date.today().isoformat()}T{hour:02d}:00:00'


def _flashes(client):
    with client.session_transaction() as sess:
        return [message for _, message in sess.get('_flashes', [])]


# -------------------------
# Basics
# -------------------------
def test_healthz(client):
    resp = client.get('/healthz')
    assert resp.status_code == 200
    assert resp.get_json()['ok'] is True


def test_index_sends_guests_to_login(client):
    resp = client.get('/')
    assert resp.status_code == 302
    assert resp.headers['Location'].endswith('/login')


def test_index_sends_users_home(user_client):
    assert user_client.get('/').headers['Location'].endswith('/dashboard/delegation')


def test_dashboard_requires_login(client):
    resp = client.get('/dashboard/admin')
    assert resp.status_code == 302
    assert resp.headers['Location'].endswith('/login')


def test_api_requires_login_with_json(client):
    resp = client.get('/api/task-counts')
    assert resp.status_code == 401
    assert resp.get_json() == {'error': 'Not authenticated'}


def test_not_found_pages(client):
    assert client.get('/nope').status_code == 404
    resp = client.get('/api/nope')
    assert resp.status_code == 404
    assert resp.get_json() == {'error': 'Not found'}


def test_indian_date_filter(app):
    with app.app_context():
        render = app.jinja_env.filters['indian_date']
        assert render('2025-01-15T09:30:00') == '15/01/2025 09:30:00'
        assert render(None) == '-'


# -------------------------
# Login / logout
# -------------------------
def test_login_page_renders(client):
    resp = client.get('/login')
    assert resp.status_code == 200
    assert b'HouseKeeping Module' in resp.data


def test_login_requires_both_fields(client, backend):
    resp = client.post('/login', data={'username': 'asha', 'password': ''})
    assert resp.status_code == 200
    assert b'Please enter both username and password' in resp.data
    assert backend.calls == []


def test_login_stores_session_and_department(client, backend):
    backend.responses[('POST', '/auth/login')] = {
        'message': 'Login successful',
        'token': 'tok-123',
        'user': {'id': 2, 'user_name': 'asha', 'role': 'user', 'email_id': 'asha@example.com'},
    }
    backend.responses[('GET', '/users/2')] = {'data': {'department': 'Mandir'}}

    resp = client.post('/login', data={'username': 'asha', 'password': 'pw'})

    assert resp.status_code == 302
    assert resp.headers['Location'].endswith('/dashboard/delegation')
    with client.session_transaction() as sess:
        assert sess['token'] == 'tok-123'
        assert sess['user_name'] == 'asha'
        assert sess['role'] == 'user'
        assert sess['email'] == 'asha@example.com'
        assert sess['department'] == 'Mandir'
        assert 'Welcome back, asha!' in [m for _, m in sess['_flashes']]


def test_login_survives_profile_failure(client, backend):
    backend.responses[('POST', '/auth/login')] = {
        'message': 'Login successful',
        'user': {'id': 1, 'user_name': 'admin', 'role': 'admin'},
    }
    backend.responses[('GET', '/users/1')] = failing('profile down')

    resp = client.post('/login', data={'username': 'admin', 'password': 'pw'})

    assert resp.headers['Location'].endswith('/dashboard/admin')
    with client.session_transaction() as sess:
        assert sess['department'] == ''


def test_login_failure_shows_backend_message(client, backend):
    backend.responses[('POST', '/auth/login')] = failing('Invalid username or password', 400)
    resp = client.post('/login', data={'username': 'asha', 'password': 'bad'})
    assert resp.status_code == 200
    assert b'Invalid username or password' in resp.data


def test_login_rejects_malformed_user(client, backend):
    backend.responses[('POST', '/auth/login')] = {'message': 'Login successful', 'user': 'asha'}
    resp = client.post('/login', data={'username': 'asha', 'password': 'pw'})
    assert resp.status_code == 200
    assert b'Login failed. Please try again.' in resp.data
    with client.session_transaction() as sess:
        assert 'user_name' not in sess


def test_logout_clears_session(admin_client, backend):
    resp = admin_client.get('/logout')
    assert resp.headers['Location'].endswith('/login')
    assert backend.calls_to('POST', '/auth/logout')
    with admin_client.session_transaction() as sess:
        assert 'user_name' not in sess


# -------------------------
# Session enforcement
# -------------------------
def test_deactivated_user_is_logged_out(user_client, supabase):
    for user in supabase.tables['users']:
        if user['user_name'] == 'asha':
            user['status'] = 'inactive'

    resp = user_client.get('/dashboard/assign-task')

    assert resp.headers['Location'].endswith('/login')
    assert 'Your account has been deactivated. You have been logged out.' in _flashes(user_client)
    with user_client.session_transaction() as sess:
        assert 'user_name' not in sess


def test_expired_token_is_logged_out(client):
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    token = jwt.encode({'exp': int(past.timestamp())}, 'unit-test-signing-key-0123456789abcdef',
                       algorithm='HS256')
    login_as(client, token=token)

    resp = client.get('/dashboard/admin')

    assert resp.headers['Location'].endswith('/login')
    assert 'Your session has expired. Please log in again.' in _flashes(client)


def test_backend_401_ends_the_session(admin_client, backend):
    backend.responses[('GET', TASK_BASE)] = UnauthorizedError('jwt expired', status=401)
    resp = admin_client.get('/dashboard/tasks')
    assert resp.headers['Location'].endswith('/login')
    with admin_client.session_transaction() as sess:
        assert 'token' not in sess


def test_settings_are_admin_only(user_client):
    resp = user_client.get('/dashboard/setting')
    assert resp.status_code == 302
    assert resp.headers['Location'].endswith('/dashboard/admin')


# -------------------------
# Dashboards
# -------------------------
def test_admin_dashboard_lists_todays_tasks(admin_client, supabase):
    supabase.tables['checklist'] = [
        {'task_id': 1, 'name': 'asha', 'department': 'Mandir',
         'task_description': 'Sweep mandir steps', 'task_start_date': _today_at(9), 'status': None},
        {'task_id': 2, 'name': 'ravi', 'department': 'Pipe Mill',
         'task_description': 'Clean pipe mill floor', 'task_start_date': _today_at(8), 'status': 'Yes'},
    ]
    resp = admin_client.get('/dashboard/admin')
    assert resp.status_code == 200
    assert b'Sweep mandir steps' in resp.data
    assert b'Clean pipe mill floor' not in resp.data


def test_user_dashboard_is_scoped_to_self(user_client, supabase):
    supabase.tables['checklist'] = [
        {'task_id': 1, 'name': 'asha', 'department': 'Mandir',
         'task_description': 'Sweep mandir steps', 'task_start_date': _today_at(9)},
        {'task_id': 2, 'name': 'ravi', 'department': 'Pipe Mill',
         'task_description': 'Clean pipe mill floor', 'task_start_date': _today_at(8)},
    ]
    resp = user_client.get('/dashboard/admin?view=all&staff=ravi')
    assert b'Sweep mandir steps' in resp.data
    assert b'Clean pipe mill floor' not in resp.data


def test_dashboard_search_box(admin_client, supabase):
    supabase.tables['checklist'] = [
        {'task_id': 1, 'name': 'asha', 'task_description': 'Sweep mandir steps',
         'task_start_date': _today_at(9)},
        {'task_id': 2, 'name': 'ravi', 'task_description': 'Wipe canteen tables',
         'task_start_date': _today_at(8)},
    ]
    resp = admin_client.get('/dashboard/admin?q=canteen')
    assert b'Wipe canteen tables' in resp.data
    assert b'Sweep mandir steps' not in resp.data


def test_staff_page(admin_client, supabase):
    supabase.tables['checklist'] = [
        {'task_id': 1, 'name': 'Asha Rani', 'department': 'Mandir', 'status': 'Yes',
         'task_start_date': _today_at(9), 'submission_date': _today_at(10)},
    ]
    resp = admin_client.get('/dashboard/staff')
    assert resp.status_code == 200
    assert b'id="asha-rani"' in resp.data


def test_checklist_range_page(admin_client, supabase):
    supabase.tables['checklist'] = [
        {'task_id': 1, 'name': 'asha', 'task_description': 'Dust the cabins',
         'task_start_date': '2025-01-12T09:00:00', 'status': 'Yes'},
        {'task_id': 2, 'name': 'asha', 'task_description': 'Mop the lab',
         'task_start_date': '2024-12-01T09:00:00'},
    ]
    resp = admin_client.get('/dashboard/checklist-range?start=2025-01-01&end=2025-01-31')
    assert resp.status_code == 200
    assert b'Dust the cabins' in resp.data
    assert b'Mop the lab' not in resp.data


def test_dashboard_reports_store_errors(admin_client, supabase):
    supabase.error = RuntimeError('store offline')
    resp = admin_client.get('/dashboard/admin')
    assert resp.status_code == 200
    assert b'Error loading dashboard' in resp.data


def test_task_tabs_use_backend(admin_client, backend):
    backend.responses[('GET', TASK_BASE)] = [
        {'task_id': 5, 'task_description': 'Polish the brass', 'task_start_date': _today_at(9)},
    ]
    backend.responses[('GET', f'{TASK_BASE}/overdue')] = []
    backend.responses[('GET', f'{TASK_BASE}/not-done')] = [{}, {}]

    resp = admin_client.get('/dashboard/tasks')

    assert resp.status_code == 200
    assert b'Polish the brass' in resp.data


def test_api_task_counts(admin_client, backend):
    backend.responses[('GET', TASK_BASE)] = {'data': [{'task_start_date': _today_at(9)}]}
    backend.responses[('GET', f'{TASK_BASE}/not-done')] = [{}]
    resp = admin_client.get('/api/task-counts')
    assert resp.get_json() == {'recent': 1, 'overdue': 0, 'not_done': 1}


def test_api_task_counts_reports_backend_errors(admin_client, backend):
    backend.responses[('GET', TASK_BASE)] = failing('boom', 503)
    resp = admin_client.get('/api/task-counts')
    assert resp.status_code == 503
    assert resp.get_json() == {'error': 'boom'}


def test_api_dashboard_summary(admin_client):
    resp = admin_client.get('/api/dashboard/summary?type=delegation')
    assert resp.status_code == 200
    assert resp.get_json() == {
        'total_tasks': 0,
        'completed_tasks': 0,
        'pending_tasks': 0,
        'overdue_tasks': 0,
        'completion_rate': 0.0,
    }


def test_api_dashboard_overview(admin_client, backend):
    backend.responses[('GET', '/dashboard/summary')] = {'total': 4}
    assert admin_client.get('/api/dashboard/overview').get_json() == {'total': 4}


# -------------------------
# Assign task
# -------------------------
ASSIGNMENT = {
    'department': 'Workshop',
    'given_by': 'AAKASH AGRAWAL',
    'name': 'Housekeeping Staff',
    'task_description': 'Clean the lathe area',
    'frequency': 'weekly',
    'task_start_date': '2025-01-20',
}


def test_assign_task_form_renders(admin_client):
    resp = admin_client.get('/dashboard/assign-task')
    assert resp.status_code == 200
    assert b'Workshop' in resp.data


def test_assign_task_validation_error(admin_client, backend):
    resp = admin_client.post('/dashboard/assign-task', data=dict(ASSIGNMENT, task_description=''))
    assert resp.status_code == 400
    assert b'Task description is required' in resp.data
    assert backend.calls_to('POST', TASK_BASE) == []


def test_assign_task_posts_payload(admin_client, backend):
    resp = admin_client.post('/dashboard/assign-task', data=ASSIGNMENT)
    assert resp.status_code == 302
    (call,) = backend.calls_to('POST', TASK_BASE)
    assert call.json['hod'] == 'Dhanji Yadav'
    assert call.json['frequency'] == 'weekly'
    assert 'Task submitted successfully.' in _flashes(admin_client)


def test_assign_task_pins_user_department(user_client, backend):
    user_client.post('/dashboard/assign-task', data=ASSIGNMENT)
    (call,) = backend.calls_to('POST', TASK_BASE)
    assert call.json['department'] == 'Mandir'


def test_assign_task_timeout_message(admin_client, backend):
    backend.responses[('POST', TASK_BASE)] = RequestTimeout('slow')
    resp = admin_client.post('/dashboard/assign-task', data=ASSIGNMENT)
    assert resp.status_code == 400
    assert b'Task is being processed. Please verify in a moment.' in resp.data


# -------------------------
# Delegation
# -------------------------
def test_delegation_lists_pending_and_history(user_client, backend):
    backend.responses[('GET', PENDING_URL)] = [
        {'task_id': 21, 'task_description': 'Refill soap dispensers',
         'task_start_date': _today_at(9)},
    ]
    backend.responses[('GET', HISTORY_URL)] = {'data': [
        {'task_id': 20, 'task_description': 'Empty the bins', 'task_start_date': '2025-01-10',
         'submission_date': '2025-01-10T15:00:00', 'status': 'Yes'},
    ]}

    resp = user_client.get('/dashboard/delegation?name=asha&start_date=')

    assert b'Refill soap dispensers' in resp.data
    assert b'Empty the bins' in resp.data
    assert b'10/01/2025 15:00:00' in resp.data
    assert backend.calls_to('GET', PENDING_URL)[0].params == {'name': 'asha'}


def test_delegation_submit_requires_selection(user_client, backend):
    resp = user_client.post('/dashboard/delegation', data={})
    assert resp.status_code == 302
    assert 'Select at least one task to submit' in _flashes(user_client)
    assert backend.calls == []


def test_delegation_submit_reports_partial_failure(user_client, backend):
    backend.responses[('PATCH', f'{TASK_BASE}/32')] = failing('Task locked', 409)
    resp = user_client.post('/dashboard/delegation', data={
        'task_ids': ['31', '32'],
        'status_31': 'Yes',
        'remark_31': 'done early',
        'image_31': (io.BytesIO(b'img'), 'proof.jpg'),
        'status_32': 'Yes',
    }, content_type='multipart/form-data')

    assert resp.status_code == 302
    assert _flashes(user_client) == ['1 task(s) submitted, 1 failed: Task locked']
    (first,) = backend.calls_to('PATCH', f'{TASK_BASE}/31')
    assert first.data['remark'] == 'done early'
    assert first.files['image'][0] == 'proof.jpg'


def test_delegation_attachment_follows_uploaded_image(user_client, backend):
    user_client.post('/dashboard/delegation', data={
        'task_ids': ['51', '52'],
        'image_51': (io.BytesIO(b'img'), 'proof.jpg'),
    }, content_type='multipart/form-data')

    (with_image,) = backend.calls_to('PATCH', f'{TASK_BASE}/51')
    (without_image,) = backend.calls_to('PATCH', f'{TASK_BASE}/52')
    assert with_image.data['attachment'] == 'Yes'
    assert without_image.data['attachment'] == 'No'
    assert without_image.files is None


def test_delegation_attachment_from_image_url(user_client, backend):
    user_client.post('/dashboard/delegation', data={
        'task_ids': ['53'],
        'image_url_53': 'https://img.test/floor.png',
    })
    (call,) = backend.calls_to('PATCH', f'{TASK_BASE}/53')
    assert call.data['attachment'] == 'Yes'
    assert call.data['image'] == 'https://img.test/floor.png'


def test_delegation_page_has_no_attachment_field(user_client, backend):
    backend.responses[('GET', PENDING_URL)] = [
        {'task_id': 7, 'task_description': 'Wash the steps', 'task_start_date': _today_at(9)},
    ]
    resp = user_client.get('/dashboard/delegation')
    assert b'name="image_7"' in resp.data
    assert b'attachment_7' not in resp.data


def test_delegation_submit_all_ok(user_client, backend):
    user_client.post('/dashboard/delegation', data={'task_ids': ['40']})
    assert _flashes(user_client) == ['1 task(s) submitted successfully']


def test_confirm_task(user_client, backend):
    resp = user_client.post('/dashboard/delegation/40/confirm')
    assert resp.headers['Location'].endswith('/dashboard/delegation')
    assert backend.calls_to('POST', f'{TASK_BASE}/40/confirm')


# -------------------------
# Settings
# -------------------------
def test_settings_lists_non_admin_users(admin_client, backend):
    backend.responses[('GET', '/users')] = {'data': [
        {'id': 1, 'user_name': 'admin', 'role': 'admin'},
        {'id': 2, 'user_name': 'asha', 'role': 'user'},
        {'id': 3, 'user_name': 'ravi', 'role': 'user'},
    ]}
    resp = admin_client.get('/dashboard/setting?q=ash')
    assert resp.status_code == 200
    assert b'value="asha"' in resp.data
    assert b'value="ravi"' not in resp.data


def test_settings_fetch_failure(admin_client, backend):
    backend.responses[('GET', '/users')] = failing('down')
    resp = admin_client.get('/dashboard/setting')
    assert b'Failed to fetch users' in resp.data


def test_create_user_requires_credentials(admin_client, backend):
    admin_client.post('/dashboard/setting/users', data={'user_name': 'new'})
    assert 'Username and password are required' in _flashes(admin_client)
    assert backend.calls_to('POST', '/users') == []


def test_create_update_delete_user(admin_client, backend):
    admin_client.post('/dashboard/setting/users', data={'user_name': 'new', 'password': 'pw'})
    admin_client.post('/dashboard/setting/users/9', data={'user_name': 'new', 'status': 'inactive'})
    admin_client.post('/dashboard/setting/users/9/delete')

    (created,) = backend.calls_to('POST', '/users')
    assert created.json['password'] == 'pw'
    (updated,) = backend.calls_to('PUT', '/users/9')
    assert updated.json['status'] == 'inactive'
    assert 'password' not in updated.json
    assert backend.calls_to('DELETE', '/users/9')


def test_delete_user_failure(admin_client, backend):
    backend.responses[('DELETE', '/users/9')] = failing('nope')
    admin_client.post('/dashboard/setting/users/9/delete')
    assert 'Failed to delete user' in _flashes(admin_client)
