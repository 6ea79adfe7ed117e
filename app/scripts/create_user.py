"""
Create an account from the command line (e.g. the first admin). Run from project root:
  python -m app.scripts.create_user EMAIL USERNAME PASSWORD [--role NAME]
Example:
  python -m app.scripts.create_user admin@example.com admin your-secure-password --role Admin
"""
import argparse
import logging
import sys

from app.api.v1.auth import build_credential_service, get_token_issuer
from app.core.config import settings
from app.core.database import SessionLocal
from app.services.credentials import CredentialService
from app.services.results import ConfigurationError, InfrastructureError
from app.services.sql_store import SqlAccountStore, SqlRoleStore
from app.services.stores import AccountStore, RoleStore


def create_user(
    service: CredentialService,
    accounts: AccountStore,
    roles: RoleStore,
    email: str,
    user_name: str,
    password: str,
    role_name: str | None = None,
) -> int:
    """Register the account and optionally grant an extra role. Returns a process exit code."""
    if role_name:
        role = roles.get_by_name(role_name)
        if role is None:
            print(f"Role '{role_name}' does not exist.", file=sys.stderr)
            return 1
    result = service.register(email, user_name, password)
    if not result.ok:
        print(result.error.message, file=sys.stderr)
        return 1
    created = result.value
    if role_name:
        accounts.add_role(created.id, role.id)
    suffix = f" with extra role '{role_name}'" if role_name else ""
    print(f"Created user '{created.email}' ({created.id}){suffix}.")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create a Trivare account.")
    parser.add_argument("email", help="Email address (used to log in)")
    parser.add_argument("user_name", help="Display name (1-100 chars)")
    parser.add_argument("password", help="Password (6-128 chars)")
    parser.add_argument("--role", default=None, help="Extra role to grant, e.g. Admin")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
    )

    db = SessionLocal()
    try:
        service = build_credential_service(db, get_token_issuer())
        return create_user(
            service,
            SqlAccountStore(db),
            SqlRoleStore(db),
            args.email,
            args.user_name,
            args.password,
            args.role,
        )
    except (ConfigurationError, InfrastructureError) as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
