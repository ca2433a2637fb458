from flask import Blueprint, request, g
from marshmallow import Schema, fields, validate, EXCLUDE
from models import db, Project
from auth import session_required
from members import get_member
from storage import get_blob_store, get_image_upload, with_image_url, StorageError
from utils import validate_request_data, data_response, error_response, unauthorized
import analytics
import logging

projects_bp = Blueprint('projects', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class CreateProjectSchema(Schema):
    """建立專案驗證 (multipart form)"""
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=256),
        error_messages={'required': 'Project name is required'}
    )
    workspace_id = fields.Str(
        required=True,
        data_key='workspaceId',
        validate=validate.Length(min=1),
        error_messages={'required': 'Workspace id is required'}
    )
    description = fields.Str(validate=validate.Length(max=2048))

class UpdateProjectSchema(Schema):
    """更新專案驗證 (multipart form)"""
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(validate=validate.Length(min=1, max=256))
    description = fields.Str(validate=validate.Length(max=2048))

class ProjectListQuerySchema(Schema):
    class Meta:
        unknown = EXCLUDE

    workspace_id = fields.Str(required=True, data_key='workspaceId', validate=validate.Length(min=1))

# ============================================
# 權限檢查
# ============================================

def check_project_access(project_id, user_id):
    """
    先找出專案所屬的 workspace,再檢查成員資格

    專案不存在和沒有權限回傳一樣的結果

    Returns:
        tuple: (project|None, member|None)
    """
    project = db.session.get(Project, project_id)
    if not project:
        return None, None

    member = get_member(project.workspace_id, user_id)
    if not member:
        return None, None

    return project, member

# ============================================
# 建立專案
# ============================================

@projects_bp.route('/', methods=['POST'])
@session_required
def create_project():
    is_valid, result = validate_request_data(CreateProjectSchema, request.form.to_dict())
    if not is_valid:
        return error_response(result, 400)

    image, image_error = get_image_upload()
    if image_error:
        return error_response(image_error, 400)

    if not get_member(result['workspace_id'], g.current_user.id):
        return unauthorized()

    try:
        image_id = get_blob_store().upload(image) if image else None

        project = Project(
            name=result['name'],
            description=result.get('description'),
            workspace_id=result['workspace_id'],
            image_id=image_id
        )
        db.session.add(project)
        db.session.commit()
    except StorageError as e:
        logger.error(f"Project image upload error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Project creation error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    logger.info(f"Project created: {project.name} by user {g.current_user.email}")

    return data_response(project.to_dict())

# ============================================
# 查詢 workspace 的專案
# ============================================

@projects_bp.route('/', methods=['GET'])
@session_required
def get_projects():
    is_valid, result = validate_request_data(ProjectListQuerySchema, request.args.to_dict())
    if not is_valid:
        return error_response(result, 400)

    workspace_id = result['workspace_id']
    if not get_member(workspace_id, g.current_user.id):
        return unauthorized()

    try:
        projects = Project.query.filter_by(
            workspace_id=workspace_id
        ).order_by(Project.created_at.desc()).all()
    except Exception as e:
        logger.error(f"Error fetching projects: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    documents = [with_image_url(project) for project in projects]
    return data_response({'documents': documents, 'total': len(documents)})

# ============================================
# 查詢單一專案
# ============================================

@projects_bp.route('/<project_id>', methods=['GET'])
@session_required
def get_project(project_id):
    project, member = check_project_access(project_id, g.current_user.id)
    if not member:
        return unauthorized()

    return data_response(with_image_url(project))

# ============================================
# 更新專案
# ============================================

@projects_bp.route('/<project_id>', methods=['PATCH'])
@session_required
def update_project(project_id):
    """更新名稱/描述/圖片,換圖成功後刪掉舊圖"""
    is_valid, result = validate_request_data(UpdateProjectSchema, request.form.to_dict())
    if not is_valid:
        return error_response(result, 400)

    image, image_error = get_image_upload()
    if image_error:
        return error_response(image_error, 400)

    project, member = check_project_access(project_id, g.current_user.id)
    if not member:
        return unauthorized()

    old_image_id = None

    try:
        if image:
            new_image_id = get_blob_store().upload(image)
            old_image_id = project.image_id
            project.image_id = new_image_id

        for field in ['name', 'description']:
            if field in result:
                setattr(project, field, result[field])

        db.session.commit()
    except StorageError as e:
        logger.error(f"Project image upload error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Project update error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    if old_image_id:
        get_blob_store().delete([old_image_id])

    logger.info(f"Project {project_id} updated by user {g.current_user.email}")

    return data_response(project.to_dict())

# ============================================
# 刪除專案
# ============================================

@projects_bp.route('/<project_id>', methods=['DELETE'])
@session_required
def delete_project(project_id):
    """刪除專案,tasks 由 cascade 刪除"""
    project, member = check_project_access(project_id, g.current_user.id)
    if not member:
        return unauthorized()

    workspace_id = project.workspace_id

    try:
        if project.image_id:
            get_blob_store().delete([project.image_id])

        db.session.delete(project)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Project deletion error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    logger.info(f"Project deleted: {project_id} by user {g.current_user.email}")

    return data_response({'id': project_id, 'workspace_id': workspace_id})

# ============================================
# 專案統計
# ============================================

@projects_bp.route('/<project_id>/analytics', methods=['GET'])
@session_required
def get_project_analytics(project_id):
    project, member = check_project_access(project_id, g.current_user.id)
    if not member:
        return unauthorized()

    try:
        result = analytics.project_analytics(project.id, member.id)
    except Exception as e:
        logger.error(f"Error computing project analytics: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    return data_response(analytics.to_response(result))
