"""ORM model for roles and the user/role join table."""

import uuid

from sqlalchemy import Column, ForeignKey, String, Table, Uuid

from app.models.base import Base


class Role(Base):
    """Reference data; the default role must exist before any registration."""

    __tablename__ = "roles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False, unique=True)


# Plain association table: no ORM relationships or back-references.
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Uuid, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)
