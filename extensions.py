from flask_bcrypt import Bcrypt
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from storage import BlobStore

# 在 app.py 用 init_app 初始化,blueprints 從這裡 import 避免循環 import
jwt = JWTManager()
bcrypt = Bcrypt()
cors = CORS()
blob_store = BlobStore()

# storage / strategy 從 app.config 的 RATELIMIT_* 讀取
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000 per day", "200 per hour"]
)
