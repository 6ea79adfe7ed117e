"""SQLAlchemy implementations of the account, role and audit ports."""

import json
import logging
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import ensure_aware
from app.models import AuditLog, Role as RoleRow, User, user_roles
from app.services.results import DuplicateEmailError, InfrastructureError
from app.services.stores import Account, AuditEntry, Role

logger = logging.getLogger(__name__)


def is_unique_violation(error: IntegrityError) -> bool:
    """Return True when the IntegrityError indicates a unique-constraint conflict."""
    original = getattr(error, "orig", None)
    sqlstate = getattr(original, "sqlstate", None) or getattr(original, "pgcode", None)
    if sqlstate == "23505":
        return True
    message = str(original or error).lower()
    return "duplicate key" in message or "unique constraint" in message


def _aware(dt: datetime | None) -> datetime | None:
    return ensure_aware(dt) if dt is not None else None


class SqlAccountStore:
    """Account store bound to one request-scoped session. Every write commits."""

    def __init__(self, session: Session) -> None:
        self._session = session

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            self._session.rollback()
            logger.exception("Account store %s failed", action)
            raise InfrastructureError(f"Account store {action} failed", cause=e) from e

    def _roles_for(self, user_id: uuid.UUID) -> list[tuple[uuid.UUID, str]]:
        rows = self._session.execute(
            select(RoleRow.id, RoleRow.name)
            .join(user_roles, user_roles.c.role_id == RoleRow.id)
            .where(user_roles.c.user_id == user_id)
            .order_by(RoleRow.name)
        ).all()
        return [(row.id, row.name) for row in rows]

    def _to_account(self, user: User) -> Account:
        roles = self._roles_for(user.id)
        return Account(
            id=user.id,
            email=user.email,
            user_name=user.user_name,
            password_hash=bytes(user.password_hash),
            password_salt=bytes(user.password_salt),
            created_at=ensure_aware(user.created_at),
            role_ids=frozenset(role_id for role_id, _ in roles),
            role_names=tuple(name for _, name in roles),
            refresh_token_hash=user.refresh_token_hash,
            refresh_token_expiry=_aware(user.refresh_token_expiry),
            password_reset_token_hash=user.password_reset_token_hash,
            password_reset_token_expiry=_aware(user.password_reset_token_expiry),
        )

    def _first(self, action: str, *criteria: Any) -> Account | None:
        with self._guard(action):
            user = self._session.execute(select(User).where(*criteria).limit(1)).scalar_one_or_none()
            return self._to_account(user) if user is not None else None

    def _conditional_update(self, action: str, *criteria: Any, **values: Any) -> bool:
        with self._guard(action):
            result = self._session.execute(update(User).where(*criteria).values(**values))
            self._session.commit()
            return result.rowcount == 1

    def get_by_id(self, account_id: uuid.UUID) -> Account | None:
        return self._first("get_by_id", User.id == account_id)

    def get_by_email(self, email: str) -> Account | None:
        return self._first("get_by_email", User.email == email)

    def get_by_reset_token_hash(self, token_hash: str) -> Account | None:
        return self._first("get_by_reset_token_hash", User.password_reset_token_hash == token_hash)

    def email_exists(self, email: str) -> bool:
        with self._guard("email_exists"):
            found = self._session.execute(
                select(User.id).where(User.email == email).limit(1)
            ).scalar_one_or_none()
            return found is not None

    def add(self, account: Account) -> Account:
        with self._guard("add"):
            user = User(
                id=account.id,
                email=account.email,
                user_name=account.user_name,
                password_hash=account.password_hash,
                password_salt=account.password_salt,
                created_at=account.created_at,
            )
            try:
                self._session.add(user)
                self._session.flush()
                if account.role_ids:
                    self._session.execute(
                        insert(user_roles),
                        [{"user_id": account.id, "role_id": role_id} for role_id in account.role_ids],
                    )
                self._session.commit()
            except IntegrityError as e:
                self._session.rollback()
                if is_unique_violation(e):
                    raise DuplicateEmailError(account.email) from e
                raise
            return self._to_account(user)

    def add_role(self, account_id: uuid.UUID, role_id: uuid.UUID) -> None:
        with self._guard("add_role"):
            exists = self._session.execute(
                select(user_roles.c.role_id).where(
                    user_roles.c.user_id == account_id,
                    user_roles.c.role_id == role_id,
                )
            ).first()
            if exists is None:
                self._session.execute(insert(user_roles).values(user_id=account_id, role_id=role_id))
            self._session.commit()

    def set_refresh_token(self, account_id: uuid.UUID, token_hash: str, expiry: datetime) -> None:
        self._conditional_update(
            "set_refresh_token",
            User.id == account_id,
            refresh_token_hash=token_hash,
            refresh_token_expiry=expiry,
        )

    def rotate_refresh_token(
        self,
        account_id: uuid.UUID,
        expected_hash: str,
        new_hash: str,
        expiry: datetime,
    ) -> bool:
        return self._conditional_update(
            "rotate_refresh_token",
            User.id == account_id,
            User.refresh_token_hash == expected_hash,
            refresh_token_hash=new_hash,
            refresh_token_expiry=expiry,
        )

    def clear_refresh_token(self, account_id: uuid.UUID, expected_hash: str) -> bool:
        return self._conditional_update(
            "clear_refresh_token",
            User.id == account_id,
            User.refresh_token_hash == expected_hash,
            refresh_token_hash=None,
            refresh_token_expiry=None,
        )

    def set_reset_token(self, account_id: uuid.UUID, token_hash: str, expiry: datetime) -> None:
        self._conditional_update(
            "set_reset_token",
            User.id == account_id,
            password_reset_token_hash=token_hash,
            password_reset_token_expiry=expiry,
        )

    def reset_password(
        self,
        account_id: uuid.UUID,
        expected_token_hash: str,
        password_hash: bytes,
        password_salt: bytes,
    ) -> bool:
        return self._conditional_update(
            "reset_password",
            User.id == account_id,
            User.password_reset_token_hash == expected_token_hash,
            password_hash=password_hash,
            password_salt=password_salt,
            password_reset_token_hash=None,
            password_reset_token_expiry=None,
        )

    def change_password(
        self,
        account_id: uuid.UUID,
        expected_password_hash: bytes,
        password_hash: bytes,
        password_salt: bytes,
    ) -> bool:
        return self._conditional_update(
            "change_password",
            User.id == account_id,
            User.password_hash == expected_password_hash,
            password_hash=password_hash,
            password_salt=password_salt,
        )

    def update_user_name(self, account_id: uuid.UUID, user_name: str) -> bool:
        return self._conditional_update(
            "update_user_name", User.id == account_id, user_name=user_name
        )


class SqlRoleStore:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_by_name(self, name: str) -> Role | None:
        try:
            row = self._session.execute(
                select(RoleRow).where(RoleRow.name == name).limit(1)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            self._session.rollback()
            logger.exception("Role lookup failed: name=%s", name)
            raise InfrastructureError("Role lookup failed", cause=e) from e
        return Role(id=row.id, name=row.name) if row is not None else None


class SqlAuditSink:
    """
    Writes audit entries through a dedicated short-lived session so a failed
    insert never rolls back or poisons the caller's session.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def add(self, entry: AuditEntry) -> None:
        db = self._session_factory()
        try:
            db.add(
                AuditLog(
                    user_id=entry.user_id,
                    event_type=entry.event_type,
                    event_timestamp=entry.timestamp,
                    details=json.dumps(entry.details, default=str, sort_keys=True),
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
