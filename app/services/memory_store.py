"""In-process implementations of the ports, keyed by id and normalized email. Used by the test-suite."""

import logging
import threading
import uuid
from collections import defaultdict
from dataclasses import replace
from datetime import datetime

from app.services.results import DuplicateEmailError
from app.services.stores import Account, AuditEntry, Role

logger = logging.getLogger(__name__)


class InMemoryAccountStore:
    """
    Dict-backed account store.

    Conditional updates take a per-account lock, so racing writers on the same
    account serialize while different accounts never contend.
    """

    def __init__(self, roles: "InMemoryRoleStore | None" = None) -> None:
        self._roles = roles
        self._by_id: dict[uuid.UUID, Account] = {}
        self._index_lock = threading.Lock()
        self._account_locks: defaultdict[uuid.UUID, threading.Lock] = defaultdict(threading.Lock)

    def _lock_for(self, account_id: uuid.UUID) -> threading.Lock:
        with self._index_lock:
            return self._account_locks[account_id]

    def _find(self, predicate) -> Account | None:
        with self._index_lock:
            for account in self._by_id.values():
                if predicate(account):
                    return account
        return None

    def get_by_id(self, account_id: uuid.UUID) -> Account | None:
        with self._index_lock:
            return self._by_id.get(account_id)

    def get_by_email(self, email: str) -> Account | None:
        return self._find(lambda a: a.email == email)

    def get_by_reset_token_hash(self, token_hash: str) -> Account | None:
        return self._find(lambda a: a.password_reset_token_hash == token_hash)

    def email_exists(self, email: str) -> bool:
        return self.get_by_email(email) is not None

    def add(self, account: Account) -> Account:
        with self._index_lock:
            if any(a.email == account.email for a in self._by_id.values()):
                raise DuplicateEmailError(account.email)
            self._by_id[account.id] = account
        return account

    def add_role(self, account_id: uuid.UUID, role_id: uuid.UUID) -> None:
        role_name = self._roles.name_of(role_id) if self._roles is not None else None
        with self._lock_for(account_id):
            account = self._by_id[account_id]
            if role_id in account.role_ids:
                return
            names = account.role_names
            if role_name is not None:
                names = tuple(sorted({*names, role_name}))
            self._by_id[account_id] = replace(
                account, role_ids=account.role_ids | {role_id}, role_names=names
            )

    def _swap(self, account_id: uuid.UUID, check, **changes) -> bool:
        with self._lock_for(account_id):
            account = self._by_id.get(account_id)
            if account is None or not check(account):
                return False
            self._by_id[account_id] = replace(account, **changes)
            return True

    def set_refresh_token(self, account_id: uuid.UUID, token_hash: str, expiry: datetime) -> None:
        self._swap(
            account_id,
            lambda a: True,
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
        return self._swap(
            account_id,
            lambda a: a.refresh_token_hash == expected_hash,
            refresh_token_hash=new_hash,
            refresh_token_expiry=expiry,
        )

    def clear_refresh_token(self, account_id: uuid.UUID, expected_hash: str) -> bool:
        return self._swap(
            account_id,
            lambda a: a.refresh_token_hash == expected_hash,
            refresh_token_hash=None,
            refresh_token_expiry=None,
        )

    def set_reset_token(self, account_id: uuid.UUID, token_hash: str, expiry: datetime) -> None:
        self._swap(
            account_id,
            lambda a: True,
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
        return self._swap(
            account_id,
            lambda a: a.password_reset_token_hash == expected_token_hash,
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
        return self._swap(
            account_id,
            lambda a: a.password_hash == expected_password_hash,
            password_hash=password_hash,
            password_salt=password_salt,
        )

    def update_user_name(self, account_id: uuid.UUID, user_name: str) -> bool:
        return self._swap(account_id, lambda a: True, user_name=user_name)


class InMemoryRoleStore:
    def __init__(self, names: tuple[str, ...] = ("User", "Admin")) -> None:
        self._roles = {name: Role(id=uuid.uuid4(), name=name) for name in names}

    def get_by_name(self, name: str) -> Role | None:
        return self._roles.get(name)

    def name_of(self, role_id: uuid.UUID) -> str | None:
        for role in self._roles.values():
            if role.id == role_id:
                return role.name
        return None


class InMemoryAuditSink:
    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []
        self._lock = threading.Lock()

    def add(self, entry: AuditEntry) -> None:
        with self._lock:
            self.entries.append(entry)

    def events(self) -> list[str]:
        return [e.event_type for e in self.entries]


class InMemoryEmailSender:
    """Records reset emails instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send_password_reset(self, to_email: str, token: str) -> None:
        logger.info("Password reset email captured for %s", to_email)
        self.sent.append((to_email, token))
