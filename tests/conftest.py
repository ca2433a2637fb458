import io
import os

import pytest

# 必須在 import app 之前設定,app.py 載入時就會選設定
os.environ['FLASK_ENV'] = 'testing'

from app import app as flask_app  # noqa: E402
from models import db  # noqa: E402

PASSWORD = 'correct-horse-battery'


@pytest.fixture()
def app(tmp_path):
    flask_app.config['UPLOAD_FOLDER'] = str(tmp_path / 'uploads')

    with flask_app.app_context():
        db.drop_all()
        db.create_all()

    yield flask_app

    with flask_app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def other_client(app):
    """第二個使用者,cookie 跟 client 分開"""
    return app.test_client()


# ============================================
# 測試用 helpers
# ============================================

def register(client, email='alice@example.com', name='Alice', password=PASSWORD):
    response = client.post('/auth/register', json={
        'name': name,
        'email': email,
        'password': password
    })
    assert response.status_code == 200, response.get_json()
    return response


def current_user(client):
    return client.get('/auth/current').get_json()['data']


def image_file(filename='logo.png', content=b'\x89PNG fake image'):
    return (io.BytesIO(content), filename)


def create_workspace(client, name='Acme', image=None):
    data = {'name': name}
    if image is not None:
        data['image'] = image
    response = client.post('/workspaces/', data=data, content_type='multipart/form-data')
    assert response.status_code == 200, response.get_json()
    return response.get_json()['data']


def create_project(client, workspace_id, name='Website', image=None):
    data = {'name': name, 'workspaceId': workspace_id}
    if image is not None:
        data['image'] = image
    response = client.post('/projects/', data=data, content_type='multipart/form-data')
    assert response.status_code == 200, response.get_json()
    return response.get_json()['data']


def get_my_member(client, workspace_id):
    user = current_user(client)
    members = client.get(f'/members/?workspaceId={workspace_id}').get_json()['data']['documents']
    return next(member for member in members if member['user_id'] == user['id'])


def create_task(client, workspace_id, project_id, assignee_id, **overrides):
    payload = {
        'name': 'Write docs',
        'status': 'TODO',
        'workspaceId': workspace_id,
        'projectId': project_id,
        'assigneeId': assignee_id
    }
    payload.update(overrides)
    response = client.post('/tasks/', json=payload)
    assert response.status_code == 200, response.get_json()
    return response.get_json()['data']


def join(client, workspace):
    return client.post(
        f"/workspaces/{workspace['id']}/join",
        json={'code': workspace['invite_code']}
    )
