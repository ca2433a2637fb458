
import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow():
    """naive UTC 時間 (資料庫欄位統一存 naive UTC)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_id():
    return str(uuid.uuid4())


def isoformat(value):
    return value.isoformat() if value else None


class MemberRole:
    ADMIN = 'ADMIN'
    MEMBER = 'MEMBER'

    ALL = (ADMIN, MEMBER)


class TaskStatus:
    BACKLOG = 'BACKLOG'
    TODO = 'TODO'
    IN_PROGRESS = 'IN_PROGRESS'
    IN_REVIEW = 'IN_REVIEW'
    DONE = 'DONE'

    ALL = (BACKLOG, TODO, IN_PROGRESS, IN_REVIEW, DONE)

# ============================================
# 1. User 模型 (帳號,取代外部 auth provider)
# ============================================
class User(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    name = db.Column(db.String(256), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    memberships = db.relationship('Member', backref='user', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at)
        }

# ============================================
# 2. Workspace 模型
# ============================================
class Workspace(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    name = db.Column(db.String(256), nullable=False)
    user_id = db.Column(db.String(36), db.ForeignKey('user.id'), nullable=False)
    image_id = db.Column(db.String(255), nullable=True)
    invite_code = db.Column(db.String(32), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # 刪除 workspace 時一併刪除 projects / members / tasks
    projects = db.relationship('Project', backref='workspace', lazy=True, cascade='all,delete-orphan')
    members = db.relationship('Member', backref='workspace', lazy=True, cascade='all,delete-orphan')
    tasks = db.relationship('Task', backref='workspace', lazy=True, cascade='all,delete')

    __table_args__ = (
        db.Index('idx_workspace_created_at', 'created_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'user_id': self.user_id,
            'image_id': self.image_id,
            'invite_code': self.invite_code,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at)
        }

# ============================================
# 3. Project 模型
# ============================================
class Project(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    name = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text, nullable=True)
    workspace_id = db.Column(
        db.String(36),
        db.ForeignKey('workspace.id', ondelete='CASCADE'),
        nullable=False
    )
    image_id = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    tasks = db.relationship('Task', backref='project', lazy=True, cascade='all,delete-orphan')

    __table_args__ = (
        db.Index('idx_project_workspace', 'workspace_id'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'workspace_id': self.workspace_id,
            'image_id': self.image_id,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at)
        }

# ============================================
# 4. Member 模型 (授權的唯一依據)
# ============================================
class Member(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    user_id = db.Column(db.String(36), db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    workspace_id = db.Column(
        db.String(36),
        db.ForeignKey('workspace.id', ondelete='CASCADE'),
        nullable=False
    )
    role = db.Column(db.String(20), nullable=False, default=MemberRole.MEMBER)  # ADMIN or MEMBER
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # 同一個使用者只能加入同一個 workspace 一次
    __table_args__ = (
        db.UniqueConstraint('user_id', 'workspace_id', name='unique_workspace_member'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'workspace_id': self.workspace_id,
            'role': self.role,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at)
        }

# ============================================
# 5. Task 模型
# ============================================
class Task(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    name = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=TaskStatus.TODO)

    workspace_id = db.Column(
        db.String(36),
        db.ForeignKey('workspace.id', ondelete='CASCADE'),
        nullable=False
    )
    project_id = db.Column(
        db.String(36),
        db.ForeignKey('project.id', ondelete='CASCADE'),
        nullable=False
    )
    # 指派對象是 member id,不是 user id
    assignee_id = db.Column(db.String(36), nullable=False)

    due_date = db.Column(db.DateTime, nullable=True)
    position = db.Column(db.Integer, nullable=False, default=1000)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        db.Index('idx_task_workspace_created', 'workspace_id', 'created_at'),
        db.Index('idx_task_project_created', 'project_id', 'created_at'),
        db.Index('idx_task_workspace_status', 'workspace_id', 'status'),
        db.Index('idx_task_assignee', 'assignee_id'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'status': self.status,
            'workspace_id': self.workspace_id,
            'project_id': self.project_id,
            'assignee_id': self.assignee_id,
            'due_date': isoformat(self.due_date),
            'position': self.position,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at)
        }

# ============================================
# 6. RevokedToken 模型 (登出後的 token 黑名單)
# ============================================
class RevokedToken(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    jti = db.Column(db.String(36), unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
