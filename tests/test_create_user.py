"""Tests for the create_user CLI helper (in-memory stores, no database)."""

import io
import unittest
from contextlib import redirect_stderr, redirect_stdout

from app.scripts.create_user import create_user
from tests.support import ServiceHarness


class TestCreateUser(unittest.TestCase):
    def setUp(self) -> None:
        self.h = ServiceHarness()

    def run_cli(self, *args, **kwargs) -> tuple[int, str, str]:
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = create_user(self.h.service, self.h.accounts, self.h.roles, *args, **kwargs)
        return code, out.getvalue(), err.getvalue()

    def test_creates_account_with_default_role(self) -> None:
        code, out, _ = self.run_cli("admin@example.com", "admin", "Secret123!")
        self.assertEqual(code, 0)
        self.assertIn("admin@example.com", out)
        account = self.h.accounts.get_by_email("admin@example.com")
        self.assertEqual(account.role_ids, {self.h.roles.get_by_name("User").id})

    def test_grants_extra_role(self) -> None:
        code, out, _ = self.run_cli("admin@example.com", "admin", "Secret123!", role_name="Admin")
        self.assertEqual(code, 0)
        self.assertIn("Admin", out)
        account = self.h.accounts.get_by_email("admin@example.com")
        self.assertIn(self.h.roles.get_by_name("Admin").id, account.role_ids)
        self.assertEqual(len(account.role_ids), 2)
        self.assertEqual(account.role_names, ("Admin", "User"))

    def test_unknown_role_creates_nothing(self) -> None:
        code, _, err = self.run_cli("admin@example.com", "admin", "Secret123!", role_name="Root")
        self.assertEqual(code, 1)
        self.assertIn("Root", err)
        self.assertIsNone(self.h.accounts.get_by_email("admin@example.com"))

    def test_duplicate_email(self) -> None:
        self.run_cli("admin@example.com", "admin", "Secret123!")
        code, _, err = self.run_cli("admin@example.com", "admin", "Secret123!")
        self.assertEqual(code, 1)
        self.assertIn("already registered", err)

    def test_weak_password(self) -> None:
        code, _, err = self.run_cli("admin@example.com", "admin", "123")
        self.assertEqual(code, 1)
        self.assertIn("password", err.lower())
