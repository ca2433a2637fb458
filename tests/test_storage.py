import io
import os

from werkzeug.datastructures import FileStorage

from storage import BlobStore, get_blob_store


def test_extension_of():
    assert BlobStore.extension_of('photo.JPG') == 'jpg'
    assert BlobStore.extension_of('archive.tar.gz') == 'gz'
    assert BlobStore.extension_of('no-extension') == 'png'
    assert BlobStore.extension_of(None) == 'png'


def test_upload_and_delete(app):
    with app.test_request_context():
        store = get_blob_store()
        key = store.upload(FileStorage(io.BytesIO(b'data'), filename='pic.gif'))

        assert key.endswith('.gif')
        assert os.path.isfile(os.path.join(app.config['UPLOAD_FOLDER'], key))
        assert store.public_url(key) == f'http://localhost/storage/{key}'

        assert store.delete([key, None]) == [key]
        assert not os.path.exists(os.path.join(app.config['UPLOAD_FOLDER'], key))


def test_delete_missing_key_is_ignored(app):
    with app.app_context():
        assert get_blob_store().delete(['missing.png']) == []


def test_public_url_with_configured_base(app):
    app.config['STORAGE_PUBLIC_URL'] = 'https://cdn.example.com/images/'
    try:
        with app.app_context():
            assert get_blob_store().public_url('abc.png') == 'https://cdn.example.com/images/abc.png'
            assert get_blob_store().public_url(None) is None
    finally:
        app.config['STORAGE_PUBLIC_URL'] = ''


def test_unknown_key_returns_404(client):
    response = client.get('/storage/missing.png')
    assert response.status_code == 404
    assert 'error' in response.get_json()


def test_health_and_index(client):
    health = client.get('/health')
    assert health.status_code == 200
    assert health.get_json()['status'] == 'healthy'

    index = client.get('/')
    assert index.get_json()['message'] == 'Jira Clone API'
