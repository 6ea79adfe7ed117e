"""Shared wiring for tests: in-memory stores, a manual clock and a cheap hasher."""

from app.core.clock import ManualClock
from app.core.security import PasswordHasher
from app.core.tokens import TokenIssuer, TokenSettings
from app.services.credentials import CredentialService
from app.services.memory_store import (
    InMemoryAccountStore,
    InMemoryAuditSink,
    InMemoryEmailSender,
    InMemoryRoleStore,
)

# Low iteration count keeps the suite fast; production uses the 100,000 default.
FAST_ITERATIONS = 1_000
TEST_SECRET = "unit-test-signing-secret-with-enough-length-0123456789"


def make_token_issuer(clock: ManualClock, **overrides) -> TokenIssuer:
    return TokenIssuer(TokenSettings(secret=TEST_SECRET, **overrides), clock=clock)


class ServiceHarness:
    """A CredentialService over in-memory collaborators, with handles on each."""

    def __init__(
        self,
        role_names: tuple[str, ...] = ("User", "Admin"),
        audit=None,
        email_sender=None,
    ) -> None:
        self.clock = ManualClock()
        self.roles = InMemoryRoleStore(role_names)
        self.accounts = InMemoryAccountStore(self.roles)
        self.audit = audit if audit is not None else InMemoryAuditSink()
        self.email = email_sender if email_sender is not None else InMemoryEmailSender()
        self.hasher = PasswordHasher(iterations=FAST_ITERATIONS)
        self.tokens = make_token_issuer(self.clock)
        self.service = CredentialService(
            accounts=self.accounts,
            roles=self.roles,
            audit=self.audit,
            email_sender=self.email,
            hasher=self.hasher,
            tokens=self.tokens,
            clock=self.clock,
        )
