# tests/conftest.py

import os

os.environ['FLASK_ENV'] = 'testing'

import pytest  # noqa: E402

from app import app as flask_app  # noqa: E402

from .fakes import FakeBackend, FakeSupabase  # noqa: E402

USERS = [
    {'id': 1, 'user_name': 'admin', 'role': 'admin', 'status': 'active',
     'department': 'Admin Office - Ground Floor', 'user_access': ''},
    {'id': 2, 'user_name': 'asha', 'role': 'user', 'status': 'active',
     'department': 'Mandir', 'user_access': 'Mandir,Main Gate'},
    {'id': 3, 'user_name': 'ravi', 'role': 'user', 'status': 'active',
     'department': 'Pipe Mill', 'user_access': 'Pipe Mill'},
]


@pytest.fixture()
def supabase():
    """Table store seeded with active users and no tasks."""
    return FakeSupabase({
        'users': [dict(u) for u in USERS],
        'checklist': [],
        'delegation': [],
    })


@pytest.fixture()
def backend():
    return FakeBackend()


@pytest.fixture()
def app(supabase, backend):
    flask_app.extensions['supabase'] = supabase
    flask_app.extensions['backend_client'] = backend
    yield flask_app
    flask_app.extensions.pop('supabase', None)
    flask_app.extensions.pop('backend_client', None)


@pytest.fixture()
def client(app):
    return app.test_client()


def login_as(client, user_name='admin', role='admin', department='', token='test-token'):
    with client.session_transaction() as sess:
        sess['token'] = token
        sess['user_id'] = 1
        sess['user_name'] = user_name
        sess['role'] = role
        sess['email'] = ''
        sess['department'] = department
    return client


@pytest.fixture()
def admin_client(client):
    return login_as(client)


@pytest.fixture()
def user_client(client):
    return login_as(client, user_name='asha', role='user', department='Mandir')
