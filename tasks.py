from flask import Blueprint, request, g
from marshmallow import Schema, fields, validate, EXCLUDE
from models import db, Task, TaskStatus, Project, Member, User
from auth import session_required
from members import get_member
from storage import with_image_url
from utils import validate_request_data, data_response, error_response, unauthorized
from datetime import datetime, timedelta, timezone
import logging

tasks_bp = Blueprint('tasks', __name__)
logger = logging.getLogger(__name__)

POSITION_STEP = 1000
MIN_POSITION = 1000
MAX_POSITION = 1_000_000

# ============================================
# Input Validation Schemas
# ============================================

class CreateTaskSchema(Schema):
    """建立任務驗證"""
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=256),
        error_messages={'required': 'Task name is required'}
    )
    status = fields.Str(required=True, validate=validate.OneOf(TaskStatus.ALL))
    workspace_id = fields.Str(required=True, data_key='workspaceId', validate=validate.Length(min=1))
    project_id = fields.Str(required=True, data_key='projectId', validate=validate.Length(min=1))
    assignee_id = fields.Str(required=True, data_key='assigneeId', validate=validate.Length(min=1))
    due_date = fields.DateTime(data_key='dueDate', allow_none=True)
    description = fields.Str(allow_none=True, validate=validate.Length(max=5000))

class UpdateTaskSchema(Schema):
    """更新任務驗證 (部分欄位)"""
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(validate=validate.Length(min=1, max=256))
    status = fields.Str(validate=validate.OneOf(TaskStatus.ALL))
    project_id = fields.Str(data_key='projectId', validate=validate.Length(min=1))
    assignee_id = fields.Str(data_key='assigneeId', validate=validate.Length(min=1))
    due_date = fields.DateTime(data_key='dueDate', allow_none=True)
    description = fields.Str(allow_none=True, validate=validate.Length(max=5000))

class TaskListQuerySchema(Schema):
    class Meta:
        unknown = EXCLUDE

    workspace_id = fields.Str(required=True, data_key='workspaceId', validate=validate.Length(min=1))
    project_id = fields.Str(data_key='projectId')
    assignee_id = fields.Str(data_key='assigneeId')
    status = fields.Str(validate=validate.OneOf(TaskStatus.ALL))
    search = fields.Str()
    due_date = fields.Date(data_key='dueDate')

class BulkTaskSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    id = fields.Str(required=True)
    status = fields.Str(required=True, validate=validate.OneOf(TaskStatus.ALL))
    position = fields.Int(required=True, validate=validate.Range(min=MIN_POSITION, max=MAX_POSITION))

class BulkUpdateSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    tasks = fields.List(fields.Nested(BulkTaskSchema), required=True)

# ============================================
# 輔助函數
# ============================================

def to_naive_utc(value):
    """帶時區的時間轉成 naive UTC,跟資料庫欄位一致"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)

def check_task_access(task_id, user_id):
    """
    檢查使用者是否有權限訪問任務 (任務所屬 workspace 的成員)

    Returns:
        tuple: (task|None, member|None)
    """
    task = db.session.get(Task, task_id)
    if not task:
        return None, None

    member = get_member(task.workspace_id, user_id)
    if not member:
        return None, None

    return task, member

def validate_project(project_id, workspace_id):
    """專案必須屬於同一個 workspace"""
    project = db.session.get(Project, project_id)
    if not project or project.workspace_id != workspace_id:
        return 'Project does not belong to this workspace.'
    return None

def validate_assignee(assignee_id, workspace_id):
    """指派對象必須是 workspace 成員"""
    assignee = Member.query.filter_by(id=assignee_id, workspace_id=workspace_id).first()
    if not assignee:
        return 'Assignee is not a member of this workspace.'
    return None

def next_position(workspace_id, status):
    """同 workspace 同狀態最大的 position + 1000"""
    highest = db.session.query(db.func.max(Task.position)).filter(
        Task.workspace_id == workspace_id,
        Task.status == status
    ).scalar()
    return highest + POSITION_STEP if highest is not None else MIN_POSITION

def serialize_tasks(tasks):
    """
    任務加上 project 和 assignee 資料

    project / assignee 各用一次查詢取得,避免 N+1
    """
    project_ids = {task.project_id for task in tasks}
    assignee_ids = {task.assignee_id for task in tasks}

    projects = {}
    if project_ids:
        projects = {
            project.id: with_image_url(project)
            for project in Project.query.filter(Project.id.in_(list(project_ids)))
        }

    assignees = {}
    if assignee_ids:
        rows = db.session.query(Member, User).join(
            User, Member.user_id == User.id
        ).filter(Member.id.in_(list(assignee_ids)))
        for member, user in rows:
            data = member.to_dict()
            data['name'] = user.name
            data['email'] = user.email
            assignees[member.id] = data

    documents = []
    for task in tasks:
        data = task.to_dict()
        data['project'] = projects.get(task.project_id)
        data['assignee'] = assignees.get(task.assignee_id)
        documents.append(data)
    return documents

# ============================================
# 查詢任務
# ============================================

@tasks_bp.route('/', methods=['GET'])
@session_required
def get_tasks():
    """
    查詢 workspace 的任務

    可依 projectId / assigneeId / status / search / dueDate 篩選
    """
    is_valid, result = validate_request_data(TaskListQuerySchema, request.args.to_dict())
    if not is_valid:
        return error_response(result, 400)

    workspace_id = result['workspace_id']
    if not get_member(workspace_id, g.current_user.id):
        return unauthorized()

    try:
        query = Task.query.filter_by(workspace_id=workspace_id)

        if result.get('project_id'):
            query = query.filter_by(project_id=result['project_id'])

        if result.get('assignee_id'):
            query = query.filter_by(assignee_id=result['assignee_id'])

        if result.get('status'):
            query = query.filter_by(status=result['status'])

        if result.get('search'):
            query = query.filter(Task.name.ilike(f"%{result['search']}%"))

        if result.get('due_date'):
            day_start = datetime.combine(result['due_date'], datetime.min.time())
            query = query.filter(
                Task.due_date >= day_start,
                Task.due_date < day_start + timedelta(days=1)
            )

        tasks = query.order_by(Task.created_at.desc()).all()
        documents = serialize_tasks(tasks)
    except Exception as e:
        logger.error(f"Error fetching tasks: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    return data_response({'documents': documents, 'total': len(documents)})

# ============================================
# 建立任務
# ============================================

@tasks_bp.route('/', methods=['POST'])
@session_required
def create_task():
    data = request.get_json(silent=True)
    if not data:
        return error_response('Request body must be JSON', 400)

    is_valid, result = validate_request_data(CreateTaskSchema, data)
    if not is_valid:
        return error_response(result, 400)

    workspace_id = result['workspace_id']
    if not get_member(workspace_id, g.current_user.id):
        return unauthorized()

    error = validate_project(result['project_id'], workspace_id) \
        or validate_assignee(result['assignee_id'], workspace_id)
    if error:
        return error_response(error, 400)

    try:
        task = Task(
            name=result['name'],
            description=result.get('description'),
            status=result['status'],
            workspace_id=workspace_id,
            project_id=result['project_id'],
            assignee_id=result['assignee_id'],
            due_date=to_naive_utc(result.get('due_date')),
            position=next_position(workspace_id, result['status'])
        )
        db.session.add(task)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Task creation error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    logger.info(f"Task created: {task.name} in workspace {workspace_id} by user {g.current_user.email}")

    return data_response(task.to_dict())

# ============================================
# 批次更新 (看板拖拉)
# ============================================

@tasks_bp.route('/bulk-update', methods=['POST'])
@session_required
def bulk_update_tasks():
    """批次更新 status / position,所有任務必須在同一個 workspace"""
    data = request.get_json(silent=True)
    if not data:
        return error_response('Request body must be JSON', 400)

    is_valid, result = validate_request_data(BulkUpdateSchema, data)
    if not is_valid:
        return error_response(result, 400)

    updates = {item['id']: item for item in result['tasks']}
    if not updates:
        return data_response([])

    tasks = Task.query.filter(Task.id.in_(list(updates))).all()
    if len(tasks) != len(updates):
        return unauthorized()

    workspace_ids = {task.workspace_id for task in tasks}
    if len(workspace_ids) != 1:
        return error_response('All tasks must belong to a single workspace.', 400)

    if not get_member(workspace_ids.pop(), g.current_user.id):
        return unauthorized()

    try:
        for task in tasks:
            task.status = updates[task.id]['status']
            task.position = updates[task.id]['position']
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Task bulk update error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    logger.info(f"{len(tasks)} tasks bulk updated by user {g.current_user.email}")

    return data_response([task.to_dict() for task in tasks])

# ============================================
# 查詢單一任務
# ============================================

@tasks_bp.route('/<task_id>', methods=['GET'])
@session_required
def get_task(task_id):
    task, member = check_task_access(task_id, g.current_user.id)
    if not member:
        return unauthorized()

    return data_response(serialize_tasks([task])[0])

# ============================================
# 更新任務
# ============================================

@tasks_bp.route('/<task_id>', methods=['PATCH'])
@session_required
def update_task(task_id):
    data = request.get_json(silent=True)
    if data is None:
        return error_response('Request body must be JSON', 400)

    is_valid, result = validate_request_data(UpdateTaskSchema, data)
    if not is_valid:
        return error_response(result, 400)

    task, member = check_task_access(task_id, g.current_user.id)
    if not member:
        return unauthorized()

    error = None
    if 'project_id' in result:
        error = validate_project(result['project_id'], task.workspace_id)
    if not error and 'assignee_id' in result:
        error = validate_assignee(result['assignee_id'], task.workspace_id)
    if error:
        return error_response(error, 400)

    if 'due_date' in result:
        result['due_date'] = to_naive_utc(result['due_date'])

    try:
        for field in ['name', 'description', 'status', 'project_id', 'assignee_id', 'due_date']:
            if field in result:
                setattr(task, field, result[field])
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Task update error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    logger.info(f"Task {task_id} updated by user {g.current_user.email}")

    return data_response(task.to_dict())

# ============================================
# 刪除任務
# ============================================

@tasks_bp.route('/<task_id>', methods=['DELETE'])
@session_required
def delete_task(task_id):
    task, member = check_task_access(task_id, g.current_user.id)
    if not member:
        return unauthorized()

    try:
        db.session.delete(task)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Task deletion error: {str(e)}", exc_info=True)
        return error_response(str(e), 500)

    logger.info(f"Task deleted: {task_id} by user {g.current_user.email}")

    return data_response({'id': task_id})
