"""
圖片儲存 (Blob Store)

key -> bytes 的簡單物件儲存,存在 UPLOAD_FOLDER 底下。
資料庫只存 key,public URL 在讀取時才組出來。
"""
import logging
import os
import uuid

from flask import Blueprint, current_app, request, send_from_directory, url_for

storage_bp = Blueprint('storage', __name__)
logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = 'png'


class StorageError(Exception):
    """上傳或讀取 blob 失敗"""


class BlobStore:
    """
    本機目錄實作的 Blob Store

    跟 Flask extension 一樣用 init_app 掛到 app 上,設定在每次呼叫時從
    current_app.config 讀取 (測試可以直接改 UPLOAD_FOLDER)
    """

    def __init__(self, app=None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        app.extensions['blob_store'] = self
        app.register_blueprint(storage_bp, url_prefix='/storage')

    @property
    def root(self):
        return os.path.abspath(current_app.config['UPLOAD_FOLDER'])

    @staticmethod
    def extension_of(filename):
        if filename and '.' in filename:
            return filename.rsplit('.', 1)[1].lower()
        return DEFAULT_EXTENSION

    def is_allowed(self, filename):
        return self.extension_of(filename) in current_app.config['ALLOWED_EXTENSIONS']

    def upload(self, file):
        """
        儲存上傳的檔案,回傳新的 key (<random hex>.<副檔名>)

        Raises:
            StorageError: 寫入失敗
        """
        key = f"{uuid.uuid4().hex}.{self.extension_of(file.filename)}"
        try:
            os.makedirs(self.root, exist_ok=True)
            file.save(os.path.join(self.root, key))
        except OSError as e:
            raise StorageError(f"Failed to upload image: {e}") from e

        logger.info(f"Image uploaded: {key}")
        return key

    def delete(self, keys):
        """
        刪除 keys (best-effort)

        刪除失敗只記 log,不 retry 也不往外丟
        """
        deleted = []
        for key in keys:
            if not key:
                continue
            path = os.path.join(self.root, os.path.basename(key))
            try:
                os.remove(path)
                deleted.append(key)
            except FileNotFoundError:
                logger.warning(f"Image already missing from storage: {key}")
            except OSError as e:
                logger.error(f"Failed to delete image {key}: {str(e)}")
        return deleted

    def public_url(self, key):
        if not key:
            return None
        base_url = current_app.config.get('STORAGE_PUBLIC_URL')
        if base_url:
            return f"{base_url.rstrip('/')}/{key}"
        return url_for('storage.get_image', key=key, _external=True)


def get_blob_store():
    """從 Flask app extensions 取得 BlobStore"""
    return current_app.extensions['blob_store']


def with_image_url(record):
    """record.to_dict() 加上 imageUrl"""
    data = record.to_dict()
    data['imageUrl'] = get_blob_store().public_url(record.image_id)
    return data


@storage_bp.route('/<path:key>', methods=['GET'])
def get_image(key):
    """讀取圖片,回應不允許執行任何內嵌內容"""
    response = send_from_directory(get_blob_store().root, key)
    response.headers['Content-Security-Policy'] = "default-src 'none'"
    return response


def get_image_upload(field='image'):
    """
    取出 multipart 上傳的圖片

    Returns:
        tuple: (file|None, error_message|None)
    """
    file = request.files.get(field)
    if file is None or not file.filename:
        return None, None
    if not get_blob_store().is_allowed(file.filename):
        return None, f"{field}: Unsupported image type."
    return file, None
