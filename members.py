from flask import Blueprint, request, g
from marshmallow import Schema, fields, validate, EXCLUDE
from models import db, Member, MemberRole, User
from auth import session_required
from utils import validate_request_data, data_response, error_response, unauthorized
import logging

members_bp = Blueprint('members', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class MemberListQuerySchema(Schema):
    class Meta:
        unknown = EXCLUDE

    workspace_id = fields.Str(required=True, data_key='workspaceId', validate=validate.Length(min=1))

class UpdateMemberSchema(Schema):
    """修改成員角色"""
    class Meta:
        unknown = EXCLUDE

    role = fields.Str(required=True, validate=validate.OneOf(MemberRole.ALL))

# ============================================
# 權限檢查 (Authorization Gate)
# ============================================

def get_member(workspace_id, user_id):
    """
    查詢使用者在 workspace 的成員資格

    每個 request 都重新查一次,不做快取

    Returns:
        Member|None: None 代表沒有權限
    """
    if not workspace_id or not user_id:
        return None
    return Member.query.filter_by(
        workspace_id=workspace_id,
        user_id=user_id
    ).first()

def get_admin_member(workspace_id, user_id):
    """只有 ADMIN 才回傳 member"""
    member = get_member(workspace_id, user_id)
    if not member or member.role != MemberRole.ADMIN:
        return None
    return member

def serialize_member(member, user=None):
    user = user or member.user
    data = member.to_dict()
    data['name'] = user.name if user else None
    data['email'] = user.email if user else None
    return data

# ============================================
# 查詢 workspace 成員
# ============================================

@members_bp.route('/', methods=['GET'])
@session_required
def get_members():
    is_valid, result = validate_request_data(MemberListQuerySchema, request.args.to_dict())
    if not is_valid:
        return error_response(result, 400)

    workspace_id = result['workspace_id']
    if not get_member(workspace_id, g.current_user.id):
        return unauthorized()

    try:
        rows = db.session.query(Member, User).join(
            User, Member.user_id == User.id
        ).filter(
            Member.workspace_id == workspace_id
        ).order_by(Member.created_at.asc()).all()
    except Exception as e:
        logger.error(f"Error fetching members: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    documents = [serialize_member(member, user) for member, user in rows]
    return data_response({'documents': documents, 'total': len(documents)})

# ============================================
# 移除成員
# ============================================

@members_bp.route('/<member_id>', methods=['DELETE'])
@session_required
def delete_member(member_id):
    """
    移除成員

    自己可以退出,ADMIN 可以移除別人;最後一個成員不能被移除
    """
    member_to_delete = db.session.get(Member, member_id)
    if not member_to_delete:
        return unauthorized()

    member = get_member(member_to_delete.workspace_id, g.current_user.id)
    if not member:
        return unauthorized()

    if member.id != member_to_delete.id and member.role != MemberRole.ADMIN:
        return unauthorized()

    member_count = Member.query.filter_by(workspace_id=member_to_delete.workspace_id).count()
    if member_count <= 1:
        return error_response('Cannot delete the only member.', 400)

    try:
        db.session.delete(member_to_delete)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Member deletion error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    logger.info(f"Member {member_id} removed by user {g.current_user.email}")

    return data_response({'id': member_id})

# ============================================
# 修改成員角色
# ============================================

@members_bp.route('/<member_id>', methods=['PATCH'])
@session_required
def update_member(member_id):
    """修改成員角色 (只有 ADMIN 可以),workspace 至少要留一個 ADMIN"""
    data = request.get_json(silent=True)
    if not data:
        return error_response('Request body must be JSON', 400)

    is_valid, result = validate_request_data(UpdateMemberSchema, data)
    if not is_valid:
        return error_response(result, 400)

    member_to_update = db.session.get(Member, member_id)
    if not member_to_update:
        return unauthorized()

    if not get_admin_member(member_to_update.workspace_id, g.current_user.id):
        return unauthorized()

    member_count = Member.query.filter_by(workspace_id=member_to_update.workspace_id).count()
    if member_count <= 1 and result['role'] != MemberRole.ADMIN:
        return error_response('Cannot downgrade the only member.', 400)

    if member_to_update.role == MemberRole.ADMIN and result['role'] != MemberRole.ADMIN:
        admin_count = Member.query.filter_by(
            workspace_id=member_to_update.workspace_id,
            role=MemberRole.ADMIN
        ).count()
        if admin_count <= 1:
            return error_response('Cannot downgrade the last admin.', 400)

    try:
        member_to_update.role = result['role']
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Member update error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    logger.info(f"Member {member_id} role set to {result['role']} by user {g.current_user.email}")

    return data_response(member_to_update.to_dict())
