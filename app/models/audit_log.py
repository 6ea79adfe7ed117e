"""ORM model for the append-only audit log."""

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String, Text, Uuid

from app.models.base import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    # BigInteger on Postgres; SQLite only autoincrements INTEGER primary keys.
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    event_timestamp = Column(DateTime(timezone=True), nullable=False)
    details = Column(Text, nullable=True)
