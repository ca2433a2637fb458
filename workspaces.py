from flask import Blueprint, request, current_app, g
from marshmallow import Schema, fields, validate, EXCLUDE
from sqlalchemy.exc import IntegrityError
from models import db, Workspace, Project, Member, MemberRole
from auth import session_required
from members import get_member, get_admin_member
from storage import get_blob_store, get_image_upload, with_image_url, StorageError
from utils import (
    validate_request_data, data_response, error_response, unauthorized, generate_invite_code
)
import analytics
import logging

workspaces_bp = Blueprint('workspaces', __name__)
logger = logging.getLogger(__name__)

MAX_INVITE_CODE_ATTEMPTS = 10

# ============================================
# Input Validation Schemas
# ============================================

class CreateWorkspaceSchema(Schema):
    """建立 workspace 驗證 (multipart form)"""
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=256),
        error_messages={'required': 'Workspace name is required'}
    )

class UpdateWorkspaceSchema(Schema):
    """更新 workspace 驗證 (multipart form)"""
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(validate=validate.Length(min=1, max=256))

class JoinWorkspaceSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    code = fields.Str(required=True)

# ============================================
# 輔助函數
# ============================================

def generate_unique_invite_code():
    """產生沒被其他 workspace 用過的邀請碼"""
    length = current_app.config['INVITE_CODE_LENGTH']
    for _ in range(MAX_INVITE_CODE_ATTEMPTS):
        code = generate_invite_code(length)
        if not Workspace.query.filter_by(invite_code=code).first():
            return code
    raise RuntimeError('Failed to generate a unique invite code')

def workspace_image_keys(workspace):
    """workspace 本身和底下所有 project 的圖片 key"""
    keys = [
        image_id for (image_id,) in db.session.query(Project.image_id).filter(
            Project.workspace_id == workspace.id,
            Project.image_id.isnot(None)
        )
    ]
    if workspace.image_id:
        keys.append(workspace.image_id)
    return keys

# ============================================
# 查詢我的 workspaces
# ============================================

@workspaces_bp.route('/', methods=['GET'])
@session_required
def get_workspaces():
    """列出我是成員的 workspaces (新的在前)"""
    try:
        workspaces = Workspace.query.join(
            Member, Member.workspace_id == Workspace.id
        ).filter(
            Member.user_id == g.current_user.id
        ).order_by(Workspace.created_at.desc()).all()
    except Exception as e:
        logger.error(f"Error fetching workspaces: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    documents = [with_image_url(workspace) for workspace in workspaces]
    return data_response({'documents': documents, 'total': len(documents)})

# ============================================
# 建立 workspace
# ============================================

@workspaces_bp.route('/', methods=['POST'])
@session_required
def create_workspace():
    """
    建立 workspace,建立者自動成為 ADMIN

    workspace 和 member 在同一個 commit,不會留下沒有成員的 workspace
    """
    is_valid, result = validate_request_data(CreateWorkspaceSchema, request.form.to_dict())
    if not is_valid:
        return error_response(result, 400)

    image, image_error = get_image_upload()
    if image_error:
        return error_response(image_error, 400)

    current_user = g.current_user
    image_id = None

    try:
        if image:
            image_id = get_blob_store().upload(image)

        workspace = Workspace(
            name=result['name'],
            user_id=current_user.id,
            image_id=image_id,
            invite_code=generate_unique_invite_code()
        )
        workspace.members.append(Member(user_id=current_user.id, role=MemberRole.ADMIN))

        db.session.add(workspace)
        db.session.commit()
    except StorageError as e:
        logger.error(f"Workspace image upload error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Workspace creation error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    logger.info(f"Workspace created: {workspace.name} by user {current_user.email}")

    return data_response(workspace.to_dict())

# ============================================
# 查詢單一 workspace
# ============================================

@workspaces_bp.route('/<workspace_id>', methods=['GET'])
@session_required
def get_workspace(workspace_id):
    if not get_member(workspace_id, g.current_user.id):
        return unauthorized()

    workspace = db.session.get(Workspace, workspace_id)
    if not workspace:
        return unauthorized()

    return data_response(with_image_url(workspace))

@workspaces_bp.route('/<workspace_id>/info', methods=['GET'])
@session_required
def get_workspace_info(workspace_id):
    """加入頁面用的基本資訊,不需要是成員"""
    workspace = db.session.get(Workspace, workspace_id)
    if not workspace:
        return unauthorized()

    return data_response({
        'id': workspace.id,
        'name': workspace.name,
        'imageUrl': get_blob_store().public_url(workspace.image_id)
    })

# ============================================
# 更新 workspace
# ============================================

@workspaces_bp.route('/<workspace_id>', methods=['PATCH'])
@session_required
def update_workspace(workspace_id):
    """
    更新名稱/圖片 (只有 ADMIN)

    新圖片先上傳,更新成功後才刪掉舊圖片
    """
    is_valid, result = validate_request_data(UpdateWorkspaceSchema, request.form.to_dict())
    if not is_valid:
        return error_response(result, 400)

    image, image_error = get_image_upload()
    if image_error:
        return error_response(image_error, 400)

    if not get_admin_member(workspace_id, g.current_user.id):
        return unauthorized()

    workspace = db.session.get(Workspace, workspace_id)
    if not workspace:
        return unauthorized()

    old_image_id = None

    try:
        if image:
            new_image_id = get_blob_store().upload(image)
            old_image_id = workspace.image_id
            workspace.image_id = new_image_id

        if 'name' in result:
            workspace.name = result['name']

        db.session.commit()
    except StorageError as e:
        logger.error(f"Workspace image upload error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Workspace update error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    if old_image_id:
        get_blob_store().delete([old_image_id])

    logger.info(f"Workspace {workspace_id} updated by user {g.current_user.email}")

    return data_response(workspace.to_dict())

# ============================================
# 刪除 workspace
# ============================================

@workspaces_bp.route('/<workspace_id>', methods=['DELETE'])
@session_required
def delete_workspace(workspace_id):
    """
    刪除 workspace (只有 ADMIN)

    projects / tasks / members 由 cascade 刪除,圖片要自己先清掉
    """
    if not get_admin_member(workspace_id, g.current_user.id):
        return unauthorized()

    workspace = db.session.get(Workspace, workspace_id)
    if not workspace:
        return unauthorized()

    try:
        get_blob_store().delete(workspace_image_keys(workspace))

        db.session.delete(workspace)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Workspace deletion error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    logger.info(f"Workspace deleted: {workspace_id} by user {g.current_user.email}")

    return data_response({'id': workspace_id})

# ============================================
# 邀請碼
# ============================================

@workspaces_bp.route('/<workspace_id>/resetInviteCode', methods=['POST'])
@session_required
def reset_invite_code(workspace_id):
    if not get_admin_member(workspace_id, g.current_user.id):
        return unauthorized()

    workspace = db.session.get(Workspace, workspace_id)
    if not workspace:
        return unauthorized()

    try:
        workspace.invite_code = generate_unique_invite_code()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Invite code reset error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    logger.info(f"Invite code reset for workspace {workspace_id} by user {g.current_user.email}")

    return data_response(workspace.to_dict())

@workspaces_bp.route('/<workspace_id>/join', methods=['POST'])
@session_required
def join_workspace(workspace_id):
    """用邀請碼加入 workspace,成為 MEMBER"""
    data = request.get_json(silent=True)
    if data is None:
        return error_response('Request body must be JSON', 400)

    is_valid, result = validate_request_data(JoinWorkspaceSchema, data)
    if not is_valid:
        return error_response(result, 400)

    current_user = g.current_user

    if get_member(workspace_id, current_user.id):
        return error_response('Already a member.', 400)

    workspace = db.session.get(Workspace, workspace_id)
    if not workspace or workspace.invite_code != result['code']:
        logger.warning(f"Invalid invite code for workspace {workspace_id} from user {current_user.email}")
        return error_response('Invalid invite code.', 400)

    try:
        db.session.add(Member(
            workspace_id=workspace_id,
            user_id=current_user.id,
            role=MemberRole.MEMBER
        ))
        db.session.commit()
    except IntegrityError:
        # 同一個使用者同時送出兩次 join
        db.session.rollback()
        return error_response('Already a member.', 400)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Join workspace error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    logger.info(f"User {current_user.email} joined workspace {workspace_id}")

    return data_response(workspace.to_dict())

# ============================================
# 統計
# ============================================

@workspaces_bp.route('/<workspace_id>/analytics', methods=['GET'])
@session_required
def get_workspace_analytics(workspace_id):
    member = get_member(workspace_id, g.current_user.id)
    if not member:
        return unauthorized()

    try:
        result = analytics.workspace_analytics(workspace_id, member.id)
    except Exception as e:
        logger.error(f"Error computing workspace analytics: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    return data_response(analytics.to_response(result))
