import os

from conftest import (
    create_project, create_task, create_workspace, get_my_member, image_file, join, register
)
from models import Member, Project, Task, Workspace


def test_create_workspace_makes_creator_admin(client):
    register(client)
    workspace = create_workspace(client, name='Acme')

    assert workspace['name'] == 'Acme'
    assert len(workspace['invite_code']) == 6
    assert workspace['image_id'] is None

    member = get_my_member(client, workspace['id'])
    assert member['role'] == 'ADMIN'


def test_create_workspace_requires_name(client):
    register(client)
    response = client.post('/workspaces/', data={}, content_type='multipart/form-data')
    assert response.status_code == 400
    assert 'name' in response.get_json()['error']


def test_create_workspace_requires_session(client):
    response = client.post('/workspaces/', data={'name': 'Acme'}, content_type='multipart/form-data')
    assert response.status_code == 401


def test_create_workspace_with_image(app, client):
    register(client)
    workspace = create_workspace(client, image=image_file('logo.png'))

    key = workspace['image_id']
    assert key.endswith('.png')
    assert os.path.isfile(os.path.join(app.config['UPLOAD_FOLDER'], key))

    detail = client.get(f"/workspaces/{workspace['id']}").get_json()['data']
    assert detail['imageUrl'].endswith(f'/storage/{key}')

    image = client.get(f'/storage/{key}')
    assert image.status_code == 200
    assert image.data == b'\x89PNG fake image'
    assert image.headers['Content-Security-Policy'] == "default-src 'none'"


def test_create_workspace_rejects_unsupported_image(client):
    register(client)
    response = client.post(
        '/workspaces/',
        data={'name': 'Acme', 'image': image_file('malware.exe')},
        content_type='multipart/form-data'
    )
    assert response.status_code == 400
    assert response.get_json() == {'error': 'image: Unsupported image type.'}


def test_create_workspace_rejects_svg_image(app, client):
    register(client)
    svg = image_file('logo.svg', b'<svg xmlns="http://www.w3.org/2000/svg"><script>alert(1)</script></svg>')

    response = client.post(
        '/workspaces/',
        data={'name': 'Acme', 'image': svg},
        content_type='multipart/form-data'
    )
    assert response.status_code == 400
    assert response.get_json() == {'error': 'image: Unsupported image type.'}
    assert not os.path.isdir(app.config['UPLOAD_FOLDER'])


def test_list_only_my_workspaces(client, other_client):
    register(client)
    register(other_client, email='bob@example.com', name='Bob')

    first = create_workspace(client, name='First')
    second = create_workspace(client, name='Second')
    create_workspace(other_client, name='Bob Space')

    data = client.get('/workspaces/').get_json()['data']
    assert data['total'] == 2
    assert {doc['id'] for doc in data['documents']} == {first['id'], second['id']}


def test_list_empty(client):
    register(client)
    data = client.get('/workspaces/').get_json()['data']
    assert data == {'documents': [], 'total': 0}


def test_non_member_gets_unauthorized(client, other_client):
    register(client)
    register(other_client, email='bob@example.com', name='Bob')
    workspace = create_workspace(client)

    for path in [
        f"/workspaces/{workspace['id']}",
        f"/workspaces/{workspace['id']}/analytics",
        f"/projects/?workspaceId={workspace['id']}",
        f"/tasks/?workspaceId={workspace['id']}",
        f"/members/?workspaceId={workspace['id']}"
    ]:
        response = other_client.get(path)
        assert response.status_code == 401, path
        assert response.get_json() == {'error': 'Unauthorized.'}


def test_unknown_workspace_looks_like_unauthorized(client):
    register(client)
    response = client.get('/workspaces/does-not-exist')
    assert response.status_code == 401


def test_workspace_info_for_non_member(client, other_client):
    register(client)
    register(other_client, email='bob@example.com', name='Bob')
    workspace = create_workspace(client, name='Acme')

    response = other_client.get(f"/workspaces/{workspace['id']}/info")
    assert response.status_code == 200
    assert response.get_json()['data'] == {
        'id': workspace['id'],
        'name': 'Acme',
        'imageUrl': None
    }


def test_update_workspace_replaces_image(app, client):
    register(client)
    workspace = create_workspace(client, image=image_file('old.png'))
    old_key = workspace['image_id']

    response = client.patch(
        f"/workspaces/{workspace['id']}",
        data={'name': 'Renamed', 'image': image_file('new.jpg')},
        content_type='multipart/form-data'
    )
    assert response.status_code == 200
    updated = response.get_json()['data']
    assert updated['name'] == 'Renamed'
    assert updated['image_id'].endswith('.jpg')

    upload_folder = app.config['UPLOAD_FOLDER']
    assert not os.path.exists(os.path.join(upload_folder, old_key))
    assert os.path.isfile(os.path.join(upload_folder, updated['image_id']))


def test_update_workspace_requires_admin(client, other_client):
    register(client)
    register(other_client, email='bob@example.com', name='Bob')
    workspace = create_workspace(client)
    join(other_client, workspace)

    response = other_client.patch(
        f"/workspaces/{workspace['id']}",
        data={'name': 'Hijacked'},
        content_type='multipart/form-data'
    )
    assert response.status_code == 401


def test_join_workspace(client, other_client):
    register(client)
    register(other_client, email='bob@example.com', name='Bob')
    workspace = create_workspace(client)

    response = join(other_client, workspace)
    assert response.status_code == 200
    assert response.get_json()['data']['id'] == workspace['id']

    member = get_my_member(other_client, workspace['id'])
    assert member['role'] == 'MEMBER'

    again = join(other_client, workspace)
    assert again.status_code == 400
    assert again.get_json() == {'error': 'Already a member.'}


def test_join_with_wrong_code(client, other_client):
    register(client)
    register(other_client, email='bob@example.com', name='Bob')
    workspace = create_workspace(client)

    response = other_client.post(f"/workspaces/{workspace['id']}/join", json={'code': 'nope00'})
    assert response.status_code == 400
    assert response.get_json() == {'error': 'Invalid invite code.'}


def test_join_unknown_workspace(client):
    register(client)
    response = client.post('/workspaces/missing/join', json={'code': 'abcdef'})
    assert response.status_code == 400
    assert response.get_json() == {'error': 'Invalid invite code.'}


def test_reset_invite_code(client, other_client):
    register(client)
    register(other_client, email='bob@example.com', name='Bob')
    workspace = create_workspace(client)

    response = client.post(f"/workspaces/{workspace['id']}/resetInviteCode")
    assert response.status_code == 200
    new_code = response.get_json()['data']['invite_code']
    assert new_code != workspace['invite_code']

    # 舊的邀請碼失效
    assert join(other_client, workspace).status_code == 400
    assert join(other_client, {'id': workspace['id'], 'invite_code': new_code}).status_code == 200


def test_reset_invite_code_requires_admin(client, other_client):
    register(client)
    register(other_client, email='bob@example.com', name='Bob')
    workspace = create_workspace(client)
    join(other_client, workspace)

    response = other_client.post(f"/workspaces/{workspace['id']}/resetInviteCode")
    assert response.status_code == 401


def test_delete_workspace_cascades(app, client):
    register(client)
    workspace = create_workspace(client, image=image_file('ws.png'))
    project = create_project(client, workspace['id'], image=image_file('project.png'))
    member = get_my_member(client, workspace['id'])
    create_task(client, workspace['id'], project['id'], member['id'])

    response = client.delete(f"/workspaces/{workspace['id']}")
    assert response.status_code == 200
    assert response.get_json()['data'] == {'id': workspace['id']}

    with app.app_context():
        assert Workspace.query.count() == 0
        assert Project.query.count() == 0
        assert Member.query.count() == 0
        assert Task.query.count() == 0

    upload_folder = app.config['UPLOAD_FOLDER']
    assert not os.path.exists(os.path.join(upload_folder, workspace['image_id']))
    assert not os.path.exists(os.path.join(upload_folder, project['image_id']))

    assert client.get('/workspaces/').get_json()['data']['total'] == 0


def test_delete_workspace_requires_admin(client, other_client):
    register(client)
    register(other_client, email='bob@example.com', name='Bob')
    workspace = create_workspace(client)
    join(other_client, workspace)

    assert other_client.delete(f"/workspaces/{workspace['id']}").status_code == 401
    assert client.get(f"/workspaces/{workspace['id']}").status_code == 200
