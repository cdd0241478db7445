"""
REST resources exposed by the housekeeping backend.

Each helper logs failures and re-raises them as ApiError so the pages can
flash a readable message. Logout is the one best-effort call.
"""
import logging
from datetime import datetime

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from api_client import ApiError
from parallel import gather, gather_settled
from task_utils import is_today, is_overdue

logger = logging.getLogger(__name__)

TASK_BASE = '/assigntask/generate'
TASK_ENDPOINTS = {
    'recent': TASK_BASE,
    'overdue': f'{TASK_BASE}/overdue',
    'not-done': f'{TASK_BASE}/not-done',
    # the dashboard's "upcoming" tab is backed by the not-done list
    'upcoming': f'{TASK_BASE}/not-done',
}
PENDING_URL = f'{TASK_BASE}/pending'
HISTORY_URL = f'{TASK_BASE}/history'

DONE_STATUSES = {'Yes', 'Done'}
SUBMIT_TIMEOUT_MS = 30000


def _as_list(body):
    if isinstance(body, list):
        return body
    if isinstance(body, dict) and isinstance(body.get('data'), list):
        return body['data']
    return None


def _now_iso():
    return datetime.now().isoformat()


class AuthAPI:
    def __init__(self, client):
        self.client = client

    def login(self, username, password):
        body = self.client.post('/auth/login', json={
            'user_name': username,
            'password': password,
        })
        if (not isinstance(body, dict) or body.get('message') != 'Login successful'
                or not isinstance(body.get('user'), dict) or not body['user']):
            message = (body or {}).get('error') if isinstance(body, dict) else None
            raise ApiError(message or 'Login failed. Please try again.')
        return body

    def get_user_profile(self, user_id):
        return self.client.get(f'/users/{user_id}')

    def logout(self):
        try:
            self.client.post('/auth/logout')
        except ApiError as e:
            logger.warning("Logout API failed: %s", e)


USER_FIELDS = {
    'user_name': '',
    'email_id': '',
    'number': '',
    'employee_id': '',
    'role': 'user',
    'status': 'active',
    'user_access': '',
    'department': '',
}


def user_payload(data, include_password=True):
    payload = {key: (data.get(key) or default) for key, default in USER_FIELDS.items()}
    password = data.get('password') or ''
    if include_password or password:
        payload['password'] = password
    return payload


def filter_users(users, name_filter=''):
    """Hide admins and apply the username search box."""
    needle = (name_filter or '').strip().lower()
    return [u for u in users
            if u.get('role') != 'admin'
            and (not needle or needle in (u.get('user_name') or '').lower())]


class UsersAPI:
    def __init__(self, client):
        self.client = client

    def list_users(self):
        body = self.client.get('/users')
        users = _as_list(body)
        if users is None:
            logger.error("Unexpected users response structure: %r", body)
            return []
        return users

    def get_user(self, user_id):
        return self.client.get(f'/users/{user_id}')

    def create_user(self, data):
        return self.client.post('/users', json=user_payload(data))

    def update_user(self, user_id, data):
        return self.client.put(f'/users/{user_id}', json=user_payload(data, include_password=False))

    def delete_user(self, user_id):
        return self.client.delete(f'/users/{user_id}')


class TaskAPI:
    def __init__(self, client):
        self.client = client

    def get_tasks(self, view='recent', page=None, limit=None, filters=None):
        endpoint = TASK_ENDPOINTS.get(view, TASK_BASE)
        params = dict(filters or {})
        if page is not None:
            params['page'] = page
        if limit is not None:
            params['limit'] = limit
        try:
            body = self.client.get(endpoint, params=params or None)
        except ApiError as e:
            logger.error("Error fetching %s tasks: %s", view, e)
            raise
        return _as_list(body) or []

    def get_recent_tasks(self):
        return self.get_tasks('recent')

    def get_overdue_tasks(self):
        return self.get_tasks('overdue')

    def get_not_done_tasks(self):
        return self.get_tasks('not-done')

    def get_task_counts(self, today=None):
        recent, overdue, not_done = gather(self.get_recent_tasks,
                                           self.get_overdue_tasks,
                                           self.get_not_done_tasks)
        return {
            'recent': sum(1 for t in recent if is_today(t.get('task_start_date'), today)),
            'overdue': sum(1 for t in overdue if is_overdue(t, today)),
            'not_done': len(not_done),
        }

    def get_todays_tasks_count(self, today=None):
        return sum(1 for t in self.get_recent_tasks() if is_today(t.get('task_start_date'), today))

    def assign_task(self, payload):
        try:
            return self.client.post(TASK_BASE, json=payload)
        except ApiError as e:
            logger.error("Error assigning task: %s", e)
            raise

    def get_summary(self):
        try:
            return self.client.get('/dashboard/summary')
        except ApiError as e:
            logger.error("Error fetching dashboard summary: %s", e)
            raise


class DelegationAPI:
    def __init__(self, client):
        self.client = client

    def get_pending_tasks(self, filters=None):
        try:
            return _as_list(self.client.get(PENDING_URL, params=filters or None)) or []
        except ApiError as e:
            logger.error("Error fetching pending tasks: %s", e)
            raise

    def get_history_tasks(self, filters=None):
        try:
            return _as_list(self.client.get(HISTORY_URL, params=filters or None)) or []
        except ApiError as e:
            logger.error("Error fetching history tasks: %s", e)
            raise

    def confirm_task(self, task_id):
        try:
            return self.client.post(f'{TASK_BASE}/{task_id}/confirm', json=None,
                                    data={'attachment': 'confirmed'})
        except ApiError as e:
            logger.error("Error confirming task %s: %s", task_id, e)
            raise

    def update_task(self, task_id, update=None, timeout_ms=None):
        update = update or {}
        form = {}
        for key in ('status', 'remark', 'attachment', 'name'):
            value = update.get(key)
            if value is not None and value != '':
                form[key] = value
        if update.get('status') in DONE_STATUSES:
            form['submission_date'] = _now_iso()

        files = None
        image = update.get('image_file')
        if isinstance(image, FileStorage) and image.filename:
            filename = secure_filename(image.filename) or 'upload'
            files = {'image': (filename, image.stream, image.mimetype)}
        elif update.get('image_url'):
            form['image'] = update['image_url']

        try:
            return self.client.patch(f'{TASK_BASE}/{task_id}', json=None, data=form, files=files,
                                     timeout_ms=timeout_ms)
        except ApiError as e:
            logger.error("Error updating task %s: %s", task_id, e)
            raise

    def submit_tasks(self, tasks):
        """Update every row in parallel; failures are collected, never raised."""
        calls = []
        for task in tasks or []:
            update = {
                'status': task.get('status') or 'Yes',
                'remark': task.get('remark') or '',
                'attachment': task.get('attachment') or 'No',
            }
            if task.get('image_file') is not None:
                update['image_file'] = task['image_file']
            elif task.get('image_url'):
                update['image_url'] = task['image_url']
            calls.append(lambda tid=task.get('task_id'), u=update:
                         self.update_task(tid, u, timeout_ms=SUBMIT_TIMEOUT_MS))

        successful, failed = [], []
        for ok, value in gather_settled(calls):
            (successful if ok else failed).append(value)
        return {'successful': successful, 'failed': failed}
