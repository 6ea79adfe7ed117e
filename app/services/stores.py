"""Domain records and the persistence/notification ports the credential service depends on."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol


@dataclass(frozen=True)
class Role:
    id: uuid.UUID
    name: str


@dataclass(frozen=True)
class Account:
    """
    Snapshot of a user account.

    Roles are held as a set of ids (plus resolved names for token claims), not
    as live objects. Refresh and reset tokens appear only as SHA-256 digests;
    each digest/expiry pair is either fully set or fully None.
    """

    id: uuid.UUID
    email: str
    user_name: str
    password_hash: bytes
    password_salt: bytes
    created_at: datetime
    role_ids: frozenset[uuid.UUID] = frozenset()
    role_names: tuple[str, ...] = ()
    refresh_token_hash: str | None = None
    refresh_token_expiry: datetime | None = None
    password_reset_token_hash: str | None = None
    password_reset_token_expiry: datetime | None = None


@dataclass(frozen=True)
class AuditEntry:
    event_type: str
    timestamp: datetime
    user_id: uuid.UUID | None = None
    details: dict[str, Any] = field(default_factory=dict)


class AccountStore(Protocol):
    """
    Account persistence.

    Methods returning bool are conditional updates: they apply only when the
    stored value still equals the expected one and report whether they did.
    """

    def get_by_id(self, account_id: uuid.UUID) -> Account | None: ...

    def get_by_email(self, email: str) -> Account | None: ...

    def get_by_reset_token_hash(self, token_hash: str) -> Account | None: ...

    def email_exists(self, email: str) -> bool: ...

    def add(self, account: Account) -> Account:
        """Insert a new account; raises DuplicateEmailError on a unique-email conflict."""
        ...

    def add_role(self, account_id: uuid.UUID, role_id: uuid.UUID) -> None: ...

    def set_refresh_token(
        self, account_id: uuid.UUID, token_hash: str, expiry: datetime
    ) -> None: ...

    def rotate_refresh_token(
        self,
        account_id: uuid.UUID,
        expected_hash: str,
        new_hash: str,
        expiry: datetime,
    ) -> bool: ...

    def clear_refresh_token(self, account_id: uuid.UUID, expected_hash: str) -> bool: ...

    def set_reset_token(
        self, account_id: uuid.UUID, token_hash: str, expiry: datetime
    ) -> None: ...

    def reset_password(
        self,
        account_id: uuid.UUID,
        expected_token_hash: str,
        password_hash: bytes,
        password_salt: bytes,
    ) -> bool:
        """Set the new password and clear both reset fields in one update."""
        ...

    def change_password(
        self,
        account_id: uuid.UUID,
        expected_password_hash: bytes,
        password_hash: bytes,
        password_salt: bytes,
    ) -> bool: ...

    def update_user_name(self, account_id: uuid.UUID, user_name: str) -> bool:
        """False when the account no longer exists."""
        ...


class RoleStore(Protocol):
    def get_by_name(self, name: str) -> Role | None: ...


class AuditSink(Protocol):
    def add(self, entry: AuditEntry) -> None: ...


class EmailSender(Protocol):
    def send_password_reset(self, to_email: str, token: str) -> None: ...
