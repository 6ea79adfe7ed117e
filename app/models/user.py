"""ORM model for application user accounts (credentials and token state)."""

import uuid

from sqlalchemy import Column, DateTime, LargeBinary, String, Uuid, func

from app.models.base import Base


class User(Base):
    """
    User account owned by the credential service.

    email is stored trimmed and lower-cased. Refresh and reset tokens are kept
    only as SHA-256 digests, each paired with its expiry (both set or both NULL).
    """

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(LargeBinary, nullable=False)
    password_salt = Column(LargeBinary, nullable=False)
    password_reset_token_hash = Column(String(64), nullable=True, unique=True)
    password_reset_token_expiry = Column(DateTime(timezone=True), nullable=True)
    refresh_token_hash = Column(String(64), nullable=True)
    refresh_token_expiry = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
