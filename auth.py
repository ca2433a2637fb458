from functools import wraps
from urllib.parse import urlencode

import click
from flask import Blueprint, request, jsonify, current_app, g, redirect
from flask_jwt_extended import (
    create_access_token, decode_token, get_jwt, get_jwt_identity, jwt_required,
    set_access_cookies, unset_jwt_cookies
)
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
from marshmallow import Schema, fields, validate, pre_load, EXCLUDE
from sqlalchemy.exc import IntegrityError

from extensions import bcrypt, limiter
from models import db, User, RevokedToken
from utils import validate_request_data, data_response, error_response, unauthorized
import logging

auth_bp = Blueprint('auth', __name__, cli_group=None)
logger = logging.getLogger(__name__)

SESSION_EXCHANGE_PURPOSE = 'session_exchange'

# ============================================
# Input Validation Schemas
# ============================================

class TrimmedSchema(Schema):
    """字串欄位先去掉前後空白"""

    class Meta:
        unknown = EXCLUDE

    @pre_load
    def strip_strings(self, data, **kwargs):
        if not isinstance(data, dict):
            return data
        return {
            key: value.strip() if isinstance(value, str) else value
            for key, value in data.items()
        }

class RegisterSchema(TrimmedSchema):
    """註冊輸入驗證"""
    name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=256),
        error_messages={'required': 'Name is required'}
    )
    email = fields.Email(required=True, error_messages={
        'required': 'Email is required',
        'invalid': 'Invalid email format'
    })
    password = fields.Str(
        required=True,
        validate=validate.Length(min=8, max=256, error='Password must be 8-256 characters'),
        error_messages={'required': 'Password is required'}
    )

class LoginSchema(TrimmedSchema):
    """登入輸入驗證"""
    email = fields.Email(required=True)
    password = fields.Str(required=True, validate=validate.Length(min=1, max=256))

class SessionExchangeSchema(TrimmedSchema):
    """GET /auth/ query 驗證"""
    user_id = fields.Str(required=True, data_key='userId', validate=validate.Length(min=1))
    secret = fields.Str(required=True, validate=validate.Length(min=1))

# ============================================
# Helper Functions
# ============================================

def get_current_user():
    """取得當前 session 的使用者,token 有效但帳號不存在時回傳 None"""
    try:
        user_id = get_jwt_identity()
        if not user_id:
            return None
        return db.session.get(User, user_id)
    except Exception as e:
        logger.error(f"Error getting current user: {str(e)}")
        return None

def session_required(fn):
    """
    驗證 session cookie 並把使用者放到 g.current_user

    cookie 缺少/無效/過期/已登出由 app.py 的 JWT loaders 回 401,
    session 交換用的 secret 不能直接當 session 用
    """
    @wraps(fn)
    @jwt_required()
    def wrapper(*args, **kwargs):
        if get_jwt().get('purpose') == SESSION_EXCHANGE_PURPOSE:
            logger.warning(f"Session exchange secret used as session for user: {get_jwt_identity()}")
            return unauthorized()

        user = get_current_user()
        if not user:
            logger.warning(f"Session valid but user not found: {get_jwt_identity()}")
            return unauthorized()
        g.current_user = user
        return fn(*args, **kwargs)
    return wrapper

def start_session(response, user):
    """發 session token 並寫進 cookie"""
    access_token = create_access_token(identity=user.id)
    set_access_cookies(response, access_token)
    return response

def create_session_secret(user):
    """產生 GET /auth/ 用的短效 secret"""
    return create_access_token(
        identity=user.id,
        expires_delta=current_app.config['SESSION_EXCHANGE_EXPIRES'],
        additional_claims={'purpose': SESSION_EXCHANGE_PURPOSE}
    )

def is_token_revoked(jti):
    return db.session.query(RevokedToken.id).filter_by(jti=jti).scalar() is not None

def revoke_token(jti):
    db.session.add(RevokedToken(jti=jti))
    db.session.commit()

# ============================================
# Session 交換 (magic link / OAuth callback)
# ============================================

@auth_bp.route('/', methods=['GET'])
def exchange_session():
    """用 userId + secret 換 session cookie,然後導回前端"""
    is_valid, result = validate_request_data(SessionExchangeSchema, request.args.to_dict())
    if not is_valid:
        return error_response(result, 400)

    try:
        claims = decode_token(result['secret'])
    except (JWTExtendedException, PyJWTError) as e:
        logger.warning(f"Invalid session secret for user {result['user_id']}: {str(e)}")
        return unauthorized()

    if claims.get('purpose') != SESSION_EXCHANGE_PURPOSE or claims.get('sub') != result['user_id']:
        return unauthorized()

    if is_token_revoked(claims['jti']):
        return unauthorized()

    user = db.session.get(User, result['user_id'])
    if not user:
        return unauthorized()

    try:
        # secret 只能用一次
        revoke_token(claims['jti'])
    except Exception as e:
        db.session.rollback()
        logger.error(f"Session exchange error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    logger.info(f"Session exchanged for user: {user.email}")

    response = redirect(current_app.config['APP_BASE_URL'])
    return start_session(response, user)

# ============================================
# 取得當前使用者資訊
# ============================================

@auth_bp.route('/current', methods=['GET'])
@session_required
def get_current():
    return data_response(g.current_user.to_dict())

# ============================================
# 登入 API
# ============================================

@auth_bp.route('/login', methods=['POST'])
@limiter.limit('10 per minute')
def login():
    """
    使用者登入

    不區分 email 錯還是 password 錯,避免帳號枚舉
    """
    data = request.get_json(silent=True)
    if not data:
        return error_response('Request body must be JSON', 400)

    is_valid, result = validate_request_data(LoginSchema, data)
    if not is_valid:
        return error_response(result, 400)

    email = result['email'].lower()
    user = User.query.filter_by(email=email).first()

    if not user or not bcrypt.check_password_hash(user.password_hash, result['password']):
        logger.warning(f"Failed login attempt for email: {email}")
        return error_response('Invalid login credentials', 400)

    logger.info(f"User logged in: {user.email}")

    return start_session(jsonify({'success': True}), user)

# ============================================
# 註冊 API
# ============================================

@auth_bp.route('/register', methods=['POST'])
@limiter.limit('5 per hour')
def register():
    """使用者註冊,成功後直接登入"""
    data = request.get_json(silent=True)
    if not data:
        return error_response('Request body must be JSON', 400)

    is_valid, result = validate_request_data(RegisterSchema, data)
    if not is_valid:
        return error_response(result, 400)

    email = result['email'].lower()
    if User.query.filter_by(email=email).first():
        return error_response('User already registered', 400)

    user = User(
        name=result['name'],
        email=email,
        password_hash=bcrypt.generate_password_hash(result['password']).decode('utf-8')
    )

    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        # 同一個 email 同時註冊
        db.session.rollback()
        return error_response('User already registered', 400)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Registration error for {email}: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    logger.info(f"New user registered: {user.email}")

    return start_session(jsonify({'success': True}), user)

# ============================================
# 登出 API
# ============================================

@auth_bp.route('/logout', methods=['POST'])
@session_required
def logout():
    """登出: token 加入黑名單並清掉 cookie"""
    try:
        revoke_token(get_jwt()['jti'])
    except Exception as e:
        db.session.rollback()
        logger.error(f"Logout error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    logger.info(f"User logged out: {g.current_user.email}")

    response = jsonify({'success': True})
    unset_jwt_cookies(response)
    return response

# ============================================
# CLI: 產生 session 交換連結
# ============================================

@auth_bp.cli.command('issue-session-secret')
@click.argument('email')
def issue_session_secret(email):
    """印出 GET /auth/ 的登入連結"""
    user = User.query.filter_by(email=email.lower()).first()
    if not user:
        raise click.ClickException(f"User not found: {email}")

    query = urlencode({'userId': user.id, 'secret': create_session_secret(user)})
    click.echo(f"{current_app.config['API_BASE_URL'].rstrip('/')}/auth/?{query}")
