"""Integration tests for the SQLAlchemy stores against in-memory SQLite."""

import json
import unittest
import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.clock import ManualClock
from app.core.security import PasswordHasher, hash_token
from app.models import AuditLog, Base, Role as RoleRow
from app.services.credentials import CredentialService
from app.services.memory_store import InMemoryEmailSender
from app.services.results import AuthErrorCode, DuplicateEmailError, InfrastructureError
from app.services.sql_store import (
    SqlAccountStore,
    SqlAuditSink,
    SqlRoleStore,
    is_unique_violation,
)
from app.services.stores import Account, AuditEntry
from tests.support import FAST_ITERATIONS, make_token_issuer

NOW = datetime(2025, 1, 1, tzinfo=UTC)


def make_session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    with factory() as db:
        db.add_all([RoleRow(id=uuid.uuid4(), name="User"), RoleRow(id=uuid.uuid4(), name="Admin")])
        db.commit()
    return factory


class SqlStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.factory = make_session_factory()
        self.db = self.factory()
        self.accounts = SqlAccountStore(self.db)
        self.roles = SqlRoleStore(self.db)
        self.user_role = self.roles.get_by_name("User")

    def tearDown(self) -> None:
        self.db.close()

    def new_account(self, email: str = "a@b.com") -> Account:
        return self.accounts.add(
            Account(
                id=uuid.uuid4(),
                email=email,
                user_name="alice",
                password_hash=b"hash-1",
                password_salt=b"salt-1",
                created_at=NOW,
                role_ids=frozenset({self.user_role.id}),
                role_names=("User",),
            )
        )


class TestSqlAccountStore(SqlStoreTestCase):
    def test_add_and_lookup(self) -> None:
        saved = self.new_account()
        by_email = self.accounts.get_by_email("a@b.com")
        self.assertEqual(by_email.id, saved.id)
        self.assertEqual(by_email.role_names, ("User",))
        self.assertEqual(by_email.role_ids, {self.user_role.id})
        self.assertEqual(by_email.password_hash, b"hash-1")
        self.assertEqual(by_email.created_at, NOW)
        self.assertIsNotNone(by_email.created_at.tzinfo)
        self.assertTrue(self.accounts.email_exists("a@b.com"))
        self.assertFalse(self.accounts.email_exists("x@y.com"))
        self.assertIsNone(self.accounts.get_by_id(uuid.uuid4()))

    def test_duplicate_email(self) -> None:
        self.new_account()
        with self.assertRaises(DuplicateEmailError):
            self.new_account()
        self.assertIsNotNone(self.accounts.get_by_email("a@b.com"))

    def test_add_role_is_idempotent(self) -> None:
        saved = self.new_account()
        admin = self.roles.get_by_name("Admin")
        self.accounts.add_role(saved.id, admin.id)
        self.accounts.add_role(saved.id, admin.id)
        self.assertEqual(self.accounts.get_by_id(saved.id).role_names, ("Admin", "User"))

    def test_rotate_refresh_token_compares_and_swaps(self) -> None:
        saved = self.new_account()
        expiry = NOW + timedelta(days=7)
        self.accounts.set_refresh_token(saved.id, "digest-1", expiry)
        self.assertFalse(self.accounts.rotate_refresh_token(saved.id, "stale", "digest-2", expiry))
        self.assertTrue(self.accounts.rotate_refresh_token(saved.id, "digest-1", "digest-2", expiry))
        self.assertFalse(self.accounts.rotate_refresh_token(saved.id, "digest-1", "digest-3", expiry))
        account = self.accounts.get_by_id(saved.id)
        self.assertEqual(account.refresh_token_hash, "digest-2")
        self.assertEqual(account.refresh_token_expiry, expiry)

    def test_clear_refresh_token(self) -> None:
        saved = self.new_account()
        self.accounts.set_refresh_token(saved.id, "digest-1", NOW)
        self.assertFalse(self.accounts.clear_refresh_token(saved.id, "other"))
        self.assertTrue(self.accounts.clear_refresh_token(saved.id, "digest-1"))
        account = self.accounts.get_by_id(saved.id)
        self.assertIsNone(account.refresh_token_hash)
        self.assertIsNone(account.refresh_token_expiry)

    def test_reset_password_consumes_token(self) -> None:
        saved = self.new_account()
        self.accounts.set_reset_token(saved.id, "reset-digest", NOW + timedelta(hours=1))
        self.assertEqual(self.accounts.get_by_reset_token_hash("reset-digest").id, saved.id)
        self.assertFalse(self.accounts.reset_password(saved.id, "wrong", b"hash-2", b"salt-2"))
        self.assertTrue(self.accounts.reset_password(saved.id, "reset-digest", b"hash-2", b"salt-2"))
        account = self.accounts.get_by_id(saved.id)
        self.assertEqual(account.password_hash, b"hash-2")
        self.assertIsNone(account.password_reset_token_hash)
        self.assertIsNone(account.password_reset_token_expiry)
        self.assertIsNone(self.accounts.get_by_reset_token_hash("reset-digest"))

    def test_change_password_requires_current_hash(self) -> None:
        saved = self.new_account()
        self.assertFalse(self.accounts.change_password(saved.id, b"nope", b"hash-2", b"salt-2"))
        self.assertTrue(self.accounts.change_password(saved.id, b"hash-1", b"hash-2", b"salt-2"))
        self.assertEqual(self.accounts.get_by_id(saved.id).password_salt, b"salt-2")

    def test_update_user_name(self) -> None:
        saved = self.new_account()
        self.assertTrue(self.accounts.update_user_name(saved.id, "Alice Smith"))
        self.assertEqual(self.accounts.get_by_id(saved.id).user_name, "Alice Smith")
        self.assertTrue(self.accounts.update_user_name(saved.id, "Alice Smith"))
        self.assertFalse(self.accounts.update_user_name(uuid.uuid4(), "bob"))

    def test_database_errors_become_infrastructure_errors(self) -> None:
        session = MagicMock()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("connection lost"))
        store = SqlAccountStore(session)
        with self.assertRaises(InfrastructureError) as ctx:
            store.get_by_email("a@b.com")
        self.assertIsInstance(ctx.exception.cause, OperationalError)
        session.rollback.assert_called_once()
        with self.assertRaises(InfrastructureError):
            SqlRoleStore(session).get_by_name("User")


class TestSqlRoleStoreAndAudit(SqlStoreTestCase):
    def test_missing_role(self) -> None:
        self.assertIsNone(self.roles.get_by_name("Nope"))

    def test_audit_sink_writes_json_details(self) -> None:
        saved = self.new_account()
        SqlAuditSink(self.factory).add(
            AuditEntry(event_type="UserLoggedIn", timestamp=NOW, user_id=saved.id, details={"ip": "1.2.3.4"})
        )
        with self.factory() as db:
            row = db.execute(select(AuditLog)).scalar_one()
        self.assertEqual(row.event_type, "UserLoggedIn")
        self.assertEqual(row.user_id, saved.id)
        self.assertEqual(json.loads(row.details), {"ip": "1.2.3.4"})

    def test_audit_sink_rolls_back_and_raises(self) -> None:
        session = MagicMock()
        session.commit.side_effect = OperationalError("INSERT", {}, Exception("locked"))
        with self.assertRaises(OperationalError):
            SqlAuditSink(lambda: session).add(AuditEntry(event_type="X", timestamp=NOW))
        session.rollback.assert_called_once()
        session.close.assert_called_once()


class TestIsUniqueViolation(unittest.TestCase):
    def test_pgcode(self) -> None:
        orig = MagicMock(sqlstate=None, pgcode="23505")
        self.assertTrue(is_unique_violation(IntegrityError("INSERT", {}, orig)))

    def test_sqlite_message(self) -> None:
        orig = Exception("UNIQUE constraint failed: users.email")
        self.assertTrue(is_unique_violation(IntegrityError("INSERT", {}, orig)))

    def test_other_integrity_error(self) -> None:
        orig = Exception("NOT NULL constraint failed: users.user_name")
        self.assertFalse(is_unique_violation(IntegrityError("INSERT", {}, orig)))


class TestCredentialServiceOverSql(SqlStoreTestCase):
    """The service flows against real SQL stores, including SQLite datetime round-trips."""

    def setUp(self) -> None:
        super().setUp()
        self.clock = ManualClock(NOW)
        self.email = InMemoryEmailSender()
        self.service = CredentialService(
            accounts=self.accounts,
            roles=self.roles,
            audit=SqlAuditSink(self.factory),
            email_sender=self.email,
            hasher=PasswordHasher(iterations=FAST_ITERATIONS),
            tokens=make_token_issuer(self.clock),
            clock=self.clock,
        )

    def test_session_lifecycle(self) -> None:
        created = self.service.register("a@b.com", "alice", "Secret123!").value
        pair = self.service.login("a@b.com", "Secret123!").value
        rotated = self.service.refresh(pair.refresh_token)
        self.assertTrue(rotated.ok)
        self.assertEqual(
            self.service.refresh(pair.refresh_token).error.code, AuthErrorCode.INVALID_REFRESH_TOKEN
        )
        self.assertTrue(self.service.logout(rotated.value.refresh_token).ok)
        self.assertIsNone(self.accounts.get_by_id(created.id).refresh_token_hash)

        with self.factory() as db:
            events = db.execute(select(AuditLog.event_type).order_by(AuditLog.id)).scalars().all()
        self.assertEqual(
            events, ["UserRegistered", "UserLoggedIn", "TokenRefreshed", "UserLoggedOut"]
        )

    def test_password_reset_flow(self) -> None:
        created = self.service.register("a@b.com", "alice", "Secret123!").value
        self.service.forgot_password("a@b.com")
        token = self.email.sent[-1][1]
        self.assertEqual(
            self.accounts.get_by_id(created.id).password_reset_token_hash, hash_token(token)
        )
        self.clock.advance(timedelta(minutes=61))
        self.assertEqual(
            self.service.reset_password(token, "New123!").error.code, AuthErrorCode.TOKEN_EXPIRED
        )
        self.service.forgot_password("a@b.com")
        token = self.email.sent[-1][1]
        self.assertTrue(self.service.reset_password(token, "New123!").ok)
        self.assertTrue(self.service.login("a@b.com", "New123!").ok)

    def test_duplicate_registration(self) -> None:
        self.service.register("a@b.com", "alice", "Secret123!")
        result = self.service.register("a@b.com", "alice", "Secret123!")
        self.assertEqual(result.error.code, AuthErrorCode.EMAIL_ALREADY_EXISTS)
