from conftest import create_workspace, get_my_member, join, register


def _setup(client, other_client):
    register(client)
    register(other_client, email='bob@example.com', name='Bob')
    workspace = create_workspace(client)
    join(other_client, workspace)
    return workspace, get_my_member(client, workspace['id']), get_my_member(other_client, workspace['id'])


def test_list_members(client, other_client):
    workspace, alice, bob = _setup(client, other_client)

    data = client.get(f"/members/?workspaceId={workspace['id']}").get_json()['data']
    assert data['total'] == 2
    by_id = {doc['id']: doc for doc in data['documents']}
    assert by_id[alice['id']]['name'] == 'Alice'
    assert by_id[alice['id']]['role'] == 'ADMIN'
    assert by_id[bob['id']]['email'] == 'bob@example.com'
    assert by_id[bob['id']]['role'] == 'MEMBER'


def test_member_can_leave(client, other_client):
    workspace, _, bob = _setup(client, other_client)

    response = other_client.delete(f"/members/{bob['id']}")
    assert response.status_code == 200
    assert response.get_json()['data'] == {'id': bob['id']}

    assert other_client.get(f"/workspaces/{workspace['id']}").status_code == 401


def test_member_cannot_remove_others(client, other_client):
    _, alice, _ = _setup(client, other_client)

    response = other_client.delete(f"/members/{alice['id']}")
    assert response.status_code == 401


def test_admin_can_remove_member(client, other_client):
    workspace, _, bob = _setup(client, other_client)

    assert client.delete(f"/members/{bob['id']}").status_code == 200
    data = client.get(f"/members/?workspaceId={workspace['id']}").get_json()['data']
    assert data['total'] == 1


def test_cannot_delete_only_member(client):
    register(client)
    workspace = create_workspace(client)
    alice = get_my_member(client, workspace['id'])

    response = client.delete(f"/members/{alice['id']}")
    assert response.status_code == 400
    assert response.get_json() == {'error': 'Cannot delete the only member.'}


def test_admin_changes_role(client, other_client):
    _, _, bob = _setup(client, other_client)

    response = client.patch(f"/members/{bob['id']}", json={'role': 'ADMIN'})
    assert response.status_code == 200
    assert response.get_json()['data']['role'] == 'ADMIN'


def test_member_cannot_change_role(client, other_client):
    _, alice, bob = _setup(client, other_client)

    assert other_client.patch(f"/members/{bob['id']}", json={'role': 'ADMIN'}).status_code == 401
    assert other_client.patch(f"/members/{alice['id']}", json={'role': 'MEMBER'}).status_code == 401


def test_cannot_downgrade_only_member(client):
    register(client)
    workspace = create_workspace(client)
    alice = get_my_member(client, workspace['id'])

    response = client.patch(f"/members/{alice['id']}", json={'role': 'MEMBER'})
    assert response.status_code == 400
    assert response.get_json() == {'error': 'Cannot downgrade the only member.'}


def test_invalid_role(client, other_client):
    _, _, bob = _setup(client, other_client)

    response = client.patch(f"/members/{bob['id']}", json={'role': 'OWNER'})
    assert response.status_code == 400
    assert 'role' in response.get_json()['error']


def test_unknown_member(client):
    register(client)
    assert client.delete('/members/missing').status_code == 401
    assert client.patch('/members/missing', json={'role': 'ADMIN'}).status_code == 401


def test_cannot_downgrade_last_admin(client, other_client):
    _, alice, bob = _setup(client, other_client)

    response = client.patch(f"/members/{alice['id']}", json={'role': 'MEMBER'})
    assert response.status_code == 400
    assert response.get_json() == {'error': 'Cannot downgrade the last admin.'}

    # 有另一個 ADMIN 之後就可以降級自己
    assert client.patch(f"/members/{bob['id']}", json={'role': 'ADMIN'}).status_code == 200
    response = client.patch(f"/members/{alice['id']}", json={'role': 'MEMBER'})
    assert response.status_code == 200
    assert response.get_json()['data']['role'] == 'MEMBER'
