from flask import Flask, request, jsonify, g
from werkzeug.exceptions import HTTPException
from config import get_config
from extensions import jwt, bcrypt, cors, limiter, blob_store
from models import db
from utils import error_response, unauthorized, UNAUTHORIZED
from sqlalchemy import text
from datetime import datetime, timezone
import logging
from logging.handlers import RotatingFileHandler
import os

# ============================================
# 初始化 Flask App
# ============================================

config_class = get_config()
config_class.validate()

app = Flask(__name__)
app.config.from_object(config_class)

SECURITY_HEADERS = {
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'DENY',
    'Referrer-Policy': 'strict-origin-when-cross-origin'
}

# ============================================
# CORS 設定
# ============================================

# session 放在 cookie,前端要帶 credentials
cors.init_app(
    app,
    supports_credentials=True,
    origins=app.config['CORS_ORIGINS'],
    methods=['GET', 'POST', 'PATCH', 'DELETE', 'OPTIONS'],
    allow_headers=['Content-Type']
)

# ============================================
# 擴展初始化
# ============================================

db.init_app(app)
jwt.init_app(app)
bcrypt.init_app(app)
limiter.init_app(app)
blob_store.init_app(app)

# ============================================
# Logging 設定
# ============================================

def setup_logging(app):
    """
    info 和 error 分開寫檔,用 RotatingFileHandler 避免 log 檔案過大
    """
    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    info_handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'error.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    # blueprints 用 logging.getLogger(__name__),掛在 root logger 才收得到
    root_logger = logging.getLogger()
    root_logger.addHandler(info_handler)
    root_logger.addHandler(error_handler)
    root_logger.setLevel(app.config['LOG_LEVEL'])

    app.logger.info('Application startup')

if not app.debug and not app.testing:
    setup_logging(app)

# ============================================
# 資料庫初始化
# ============================================

with app.app_context():
    db.create_all()
    app.logger.info('Database tables created')

# ============================================
# 註冊 Blueprints
# ============================================

from auth import auth_bp, is_token_revoked
app.register_blueprint(auth_bp, url_prefix='/auth')

from workspaces import workspaces_bp
app.register_blueprint(workspaces_bp, url_prefix='/workspaces')

from projects import projects_bp
app.register_blueprint(projects_bp, url_prefix='/projects')

from tasks import tasks_bp
app.register_blueprint(tasks_bp, url_prefix='/tasks')

from members import members_bp
app.register_blueprint(members_bp, url_prefix='/members')

# ============================================
# Session (JWT) 錯誤處理
# 一律回 401 "Unauthorized.",不透露原因
# ============================================

@jwt.token_in_blocklist_loader
def check_if_token_revoked(jwt_header, jwt_payload):
    return is_token_revoked(jwt_payload['jti'])

@jwt.expired_token_loader
def expired_token_callback(jwt_header, jwt_payload):
    app.logger.warning(f"Expired session from: {request.remote_addr}")
    return unauthorized()

@jwt.invalid_token_loader
def invalid_token_callback(error):
    app.logger.warning(f"Invalid session from: {request.remote_addr}, error: {error}")
    return unauthorized()

@jwt.unauthorized_loader
def unauthorized_callback(error):
    return unauthorized()

@jwt.revoked_token_loader
def revoked_token_callback(jwt_header, jwt_payload):
    app.logger.warning(f"Revoked session from: {request.remote_addr}")
    return unauthorized()

# ============================================
# 全域錯誤處理
# ============================================

@app.errorhandler(400)
def bad_request(error):
    return error_response('The request is malformed or invalid', 400)

@app.errorhandler(401)
def unauthorized_error(error):
    return error_response(UNAUTHORIZED, 401)

@app.errorhandler(404)
def not_found(error):
    return error_response('The requested resource does not exist', 404)

@app.errorhandler(405)
def method_not_allowed(error):
    return error_response('The HTTP method is not allowed for this endpoint', 405)

@app.errorhandler(413)
def payload_too_large(error):
    return error_response('The uploaded file is too large', 413)

@app.errorhandler(429)
def rate_limit_exceeded(error):
    app.logger.warning(f"Rate limit exceeded from: {request.remote_addr}")
    return error_response('Too many requests. Please try again later.', 429)

@app.errorhandler(500)
def internal_server_error(error):
    db.session.rollback()
    app.logger.error(f"Internal server error: {str(error)}", exc_info=True)
    return error_response(str(getattr(error, 'original_exception', None) or error), 500)

@app.errorhandler(Exception)
def handle_unexpected_error(error):
    """最後的防線,捕捉所有沒被處理的 exception"""
    if isinstance(error, HTTPException):
        return error_response(error.description, error.code)

    db.session.rollback()
    app.logger.error(f"Unexpected error: {str(error)}", exc_info=True)
    return error_response(str(error), 500)

# ============================================
# Request/Response Logging
# ============================================

@app.before_request
def log_request():
    if not app.debug:
        app.logger.info(f"Request: {request.method} {request.path} from {request.remote_addr}")

@app.after_request
def log_response(response):
    if not app.debug:
        app.logger.info(
            f"Response: {response.status_code} for {request.method} {request.path} "
            f"user={getattr(g.get('current_user'), 'email', '-')}"
        )

    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)

    return response

# ============================================
# Health Check Endpoint
# ============================================

@app.route('/health', methods=['GET'])
def health_check():
    """資料庫和圖片目錄都可用才算 healthy"""
    checks = {'database': 'connected', 'storage': 'available'}

    try:
        db.session.execute(text('SELECT 1'))
    except Exception as e:
        app.logger.error(f"Health check database ping failed: {str(e)}")
        checks['database'] = 'disconnected'

    storage_root = blob_store.root
    if os.path.isdir(storage_root) and not os.access(storage_root, os.W_OK):
        app.logger.error(f"Health check storage not writable: {storage_root}")
        checks['storage'] = 'unavailable'

    healthy = checks['database'] == 'connected' and checks['storage'] == 'available'

    return jsonify({
        'status': 'healthy' if healthy else 'unhealthy',
        'version': app.config['API_VERSION'],
        'timestamp': datetime.now(timezone.utc).isoformat(),
        **checks
    }), 200 if healthy else 503

# ============================================
# API 首頁
# ============================================

@app.route('/')
@limiter.limit("10 per minute")
def home():
    return jsonify({
        'message': 'Jira Clone API',
        'version': app.config['API_VERSION'],
        'endpoints': {
            'health': {'path': '/health', 'methods': ['GET']},
            'auth': {
                'session': {'path': '/auth/', 'methods': ['GET']},
                'current': {'path': '/auth/current', 'methods': ['GET']},
                'login': {'path': '/auth/login', 'methods': ['POST']},
                'register': {'path': '/auth/register', 'methods': ['POST']},
                'logout': {'path': '/auth/logout', 'methods': ['POST']}
            },
            'workspaces': {
                'list': {'path': '/workspaces/', 'methods': ['GET', 'POST']},
                'detail': {'path': '/workspaces/:id', 'methods': ['GET', 'PATCH', 'DELETE']},
                'info': {'path': '/workspaces/:id/info', 'methods': ['GET']},
                'reset_invite_code': {'path': '/workspaces/:id/resetInviteCode', 'methods': ['POST']},
                'join': {'path': '/workspaces/:id/join', 'methods': ['POST']},
                'analytics': {'path': '/workspaces/:id/analytics', 'methods': ['GET']}
            },
            'projects': {
                'list': {'path': '/projects/?workspaceId=', 'methods': ['GET', 'POST']},
                'detail': {'path': '/projects/:id', 'methods': ['GET', 'PATCH', 'DELETE']},
                'analytics': {'path': '/projects/:id/analytics', 'methods': ['GET']}
            },
            'tasks': {
                'list': {'path': '/tasks/?workspaceId=', 'methods': ['GET', 'POST']},
                'detail': {'path': '/tasks/:id', 'methods': ['GET', 'PATCH', 'DELETE']},
                'bulk_update': {'path': '/tasks/bulk-update', 'methods': ['POST']}
            },
            'members': {
                'list': {'path': '/members/?workspaceId=', 'methods': ['GET']},
                'detail': {'path': '/members/:id', 'methods': ['PATCH', 'DELETE']}
            }
        }
    })

# ============================================
# 啟動應用
# ============================================

if __name__ == '__main__':
    # production 環境請用 gunicorn
    debug_mode = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    port = int(os.getenv('FLASK_PORT', 8888))

    app.run(
        debug=debug_mode,
        port=port,
        host='0.0.0.0'
    )
