"""SQLAlchemy ORM models."""

from app.models.audit_log import AuditLog
from app.models.base import Base
from app.models.role import Role, user_roles
from app.models.user import User

__all__ = ["AuditLog", "Base", "Role", "User", "user_roles"]
