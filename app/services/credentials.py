"""
Credential service: registration, login, token refresh/logout, password reset
and the account profile (read and user name update).

Every operation returns a Result. Expected failures (duplicate email, bad
credentials, invalid tokens) are ServiceError values and are audited;
ConfigurationError and InfrastructureError are the only exceptions raised.
Audit-sink failures are logged and never change an operation's outcome.
"""

import hmac
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from app.core.clock import Clock, SystemClock
from app.core.security import (
    EMAIL_MAX_LEN,
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    USERNAME_MAX_LEN,
    USERNAME_MIN_LEN,
    PasswordHasher,
    generate_reset_token,
    hash_token,
)
from app.core.tokens import TokenIssuer
from app.schemas.auth import (
    LoginResponse,
    MessageResponse,
    RegisterResponse,
    TokenPairResponse,
    UserDto,
)
from app.services.results import (
    AuthErrorCode,
    ConfigurationError,
    DuplicateEmailError,
    InfrastructureError,
    Result,
)
from app.services.stores import (
    Account,
    AccountStore,
    AuditEntry,
    AuditSink,
    EmailSender,
    Role,
    RoleStore,
)

logger = logging.getLogger(__name__)

# User-visible messages. The credential and refresh messages are shared by
# every internal cause so callers cannot tell the causes apart.
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
INVALID_REFRESH_TOKEN_MESSAGE = "Invalid or expired refresh token"
FORGOT_PASSWORD_MESSAGE = "If an account with this email exists, a reset link has been sent"
TOKEN_NOT_FOUND_MESSAGE = "Reset token not found"
TOKEN_EXPIRED_MESSAGE = "Reset token has expired"
SAME_PASSWORD_MESSAGE = "New password cannot be the same as the current password"
CURRENT_PASSWORD_MISMATCH_MESSAGE = "Current password is incorrect"
LOGOUT_MESSAGE = "Logged out successfully"
RESET_PASSWORD_MESSAGE = "Password reset successfully."
CHANGE_PASSWORD_MESSAGE = "Password changed successfully."
USER_NOT_FOUND_MESSAGE = "User not found"

DEFAULT_RESET_TOKEN_LIFETIME = timedelta(hours=1)


def normalize_email(value: str) -> str:
    return value.strip().lower()


def _is_well_formed(value: str) -> bool:
    """False for strings holding lone surrogates, which no store or log handler can encode."""
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _looks_like_email(value: str) -> bool:
    local, sep, domain = value.partition("@")
    return (
        bool(sep and local and domain)
        and " " not in value
        and len(value) <= EMAIL_MAX_LEN
        and _is_well_formed(value)
    )


def _user_name_ok(name: str) -> bool:
    return USERNAME_MIN_LEN <= len(name) <= USERNAME_MAX_LEN and _is_well_formed(name)


def _password_length_ok(password: str) -> bool:
    return PASSWORD_MIN_LEN <= len(password) <= PASSWORD_MAX_LEN


def _validation_error(message: str, field: str) -> Result[Any]:
    return Result.failure(AuthErrorCode.VALIDATION_ERROR, message, details={"field": field})


def _to_user_dto(account: Account) -> UserDto:
    return UserDto(
        id=account.id,
        email=account.email,
        user_name=account.user_name,
        created_at=account.created_at,
        roles=list(account.role_names),
    )


class CredentialService:
    """
    Orchestrates PasswordHasher, TokenIssuer and the stores.

    Token rotation, logout and password reset use conditional store updates,
    so two requests racing on the same token cannot both succeed.
    """

    def __init__(
        self,
        *,
        accounts: AccountStore,
        roles: RoleStore,
        audit: AuditSink,
        email_sender: EmailSender,
        hasher: PasswordHasher,
        tokens: TokenIssuer,
        clock: Clock | None = None,
        default_role_name: str = "User",
        reset_token_lifetime: timedelta = DEFAULT_RESET_TOKEN_LIFETIME,
    ) -> None:
        self._accounts = accounts
        self._roles = roles
        self._audit_sink = audit
        self._email_sender = email_sender
        self._hasher = hasher
        self._tokens = tokens
        self._clock = clock or SystemClock()
        self._default_role_name = default_role_name
        self._reset_token_lifetime = reset_token_lifetime

    # --------- Helpers ----------
    def _audit(self, event_type: str, user_id: uuid.UUID | None = None, **details: Any) -> None:
        entry = AuditEntry(
            event_type=event_type,
            timestamp=self._clock.now(),
            user_id=user_id,
            details=details,
        )
        try:
            self._audit_sink.add(entry)
        except Exception:
            logger.warning("Audit entry %s could not be written", event_type, exc_info=True)

    def _require_default_role(self) -> Role:
        role = self._roles.get_by_name(self._default_role_name)
        if role is None:
            logger.critical("Default role '%s' not found", self._default_role_name)
            raise ConfigurationError(f"Default role '{self._default_role_name}' not found")
        return role

    def _invalid_credentials(self) -> Result[LoginResponse]:
        return Result.failure(AuthErrorCode.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE)

    def _invalid_refresh(self) -> Result[Any]:
        return Result.failure(AuthErrorCode.INVALID_REFRESH_TOKEN, INVALID_REFRESH_TOKEN_MESSAGE)

    def _issue_pair(self, account: Account) -> tuple[str, str, datetime]:
        access_token = self._tokens.issue_access_token(account)
        refresh_token = self._tokens.issue_refresh_token(account.id)
        expiry = self._clock.now() + self._tokens.refresh_lifetime
        return access_token, refresh_token, expiry

    def _resolve_refresh_token(
        self, refresh_token: str, *, check_expiry: bool
    ) -> tuple[Account | None, str]:
        """Return the account whose stored refresh token matches, or (None, reason)."""
        account_id = self._tokens.validate_refresh_token(refresh_token)
        if account_id is None:
            return None, "invalid token"
        account = self._accounts.get_by_id(account_id)
        if account is None:
            return None, f"unknown account {account_id}"
        stored = account.refresh_token_hash
        if stored is None or account.refresh_token_expiry is None:
            return None, f"no active refresh token for {account_id}"
        if not hmac.compare_digest(stored, hash_token(refresh_token)):
            return None, f"token mismatch for {account_id}"
        if check_expiry and account.refresh_token_expiry <= self._clock.now():
            return None, f"stored refresh token expired for {account_id}"
        return account, ""

    # --------- Startup ----------
    def verify_default_role(self) -> Role:
        """Raise ConfigurationError if the default role is missing; called at startup."""
        role = self._require_default_role()
        logger.info("Default role '%s' present", role.name)
        return role

    # --------- Core operations ----------
    def register(self, email: str, user_name: str, password: str) -> Result[RegisterResponse]:
        if email is None or user_name is None or password is None:
            return _validation_error("email, userName and password are required", "body")
        normalized = normalize_email(email)
        name = user_name.strip()
        if not _looks_like_email(normalized):
            return _validation_error("A valid email address is required", "email")
        if not _user_name_ok(name):
            return _validation_error("Invalid user name", "userName")
        if not _password_length_ok(password):
            return _validation_error("Invalid password length", "password")

        duplicate = Result.failure(
            AuthErrorCode.EMAIL_ALREADY_EXISTS,
            f"Email '{normalized}' is already registered.",
        )
        if self._accounts.email_exists(normalized):
            logger.warning("Registration failed - email already exists: %s", normalized)
            self._audit("RegistrationFailed", email=normalized, reason=AuthErrorCode.EMAIL_ALREADY_EXISTS)
            return duplicate

        role = self._require_default_role()
        password_hash, password_salt = self._hasher.hash(password)
        account = Account(
            id=uuid.uuid4(),
            email=normalized,
            user_name=name,
            password_hash=password_hash,
            password_salt=password_salt,
            created_at=self._clock.now(),
            role_ids=frozenset({role.id}),
            role_names=(role.name,),
        )
        try:
            saved = self._accounts.add(account)
        except DuplicateEmailError:
            logger.warning("Registration failed - concurrent registration for %s", normalized)
            self._audit("RegistrationFailed", email=normalized, reason=AuthErrorCode.EMAIL_ALREADY_EXISTS)
            return duplicate
        except Exception as e:
            logger.exception("Registration failed - could not persist account for %s", normalized)
            self._audit("RegistrationFailed", email=normalized, reason=type(e).__name__)
            if isinstance(e, InfrastructureError):
                raise
            raise InfrastructureError("Could not persist new account", cause=e) from e

        self._audit("UserRegistered", saved.id, email=saved.email)
        logger.info("User registered: user_id=%s", saved.id)
        return Result.success(
            RegisterResponse(id=saved.id, email=saved.email, created_at=saved.created_at)
        )

    def login(self, email: str, password: str) -> Result[LoginResponse]:
        if not email or password is None:
            return _validation_error("email and password are required", "body")
        normalized = normalize_email(email)
        if not _looks_like_email(normalized):
            self._hasher.dummy_verify(password)
            logger.warning("Login failed - malformed email")
            return self._invalid_credentials()

        account = self._accounts.get_by_email(normalized)
        if account is None:
            self._hasher.dummy_verify(password)
            logger.warning("Login failed - user not found: %s", normalized)
            self._audit("LoginFailed", email=normalized, reason="UnknownAccount")
            return self._invalid_credentials()

        if not self._hasher.verify(password, account.password_hash, account.password_salt):
            logger.warning("Login failed - invalid password: user_id=%s", account.id)
            self._audit("LoginFailed", account.id, reason="InvalidPassword")
            return self._invalid_credentials()

        access_token, refresh_token, expiry = self._issue_pair(account)
        self._accounts.set_refresh_token(account.id, hash_token(refresh_token), expiry)
        self._audit("UserLoggedIn", account.id)

        return Result.success(
            LoginResponse(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_in=self._tokens.access_expires_in,
                user=_to_user_dto(account),
            )
        )

    def refresh(self, refresh_token: str) -> Result[TokenPairResponse]:
        if not refresh_token:
            return self._invalid_refresh()
        account, reason = self._resolve_refresh_token(refresh_token, check_expiry=True)
        if account is None:
            logger.warning("Refresh token validation failed - %s", reason)
            return self._invalid_refresh()

        access_token, new_refresh_token, expiry = self._issue_pair(account)
        rotated = self._accounts.rotate_refresh_token(
            account.id,
            expected_hash=hash_token(refresh_token),
            new_hash=hash_token(new_refresh_token),
            expiry=expiry,
        )
        if not rotated:
            logger.warning("Refresh token rotation lost a race: user_id=%s", account.id)
            return self._invalid_refresh()

        self._audit("TokenRefreshed", account.id)
        return Result.success(
            TokenPairResponse(
                access_token=access_token,
                refresh_token=new_refresh_token,
                expires_in=self._tokens.access_expires_in,
            )
        )

    def logout(self, refresh_token: str) -> Result[MessageResponse]:
        if not refresh_token:
            return self._invalid_refresh()
        account, reason = self._resolve_refresh_token(refresh_token, check_expiry=False)
        if account is None:
            logger.warning("Logout failed - %s", reason)
            return self._invalid_refresh()

        if not self._accounts.clear_refresh_token(account.id, hash_token(refresh_token)):
            logger.warning("Logout failed - refresh token replaced concurrently: user_id=%s", account.id)
            return self._invalid_refresh()

        self._audit("UserLoggedOut", account.id)
        return Result.success(MessageResponse(message=LOGOUT_MESSAGE))

    def forgot_password(self, email: str) -> Result[MessageResponse]:
        """
        Start a password reset. The response is identical whether or not the
        account exists, and an email delivery failure does not change it either.
        """
        if not email or not email.strip():
            return _validation_error("email is required", "email")
        normalized = normalize_email(email)
        generic = Result.success(MessageResponse(message=FORGOT_PASSWORD_MESSAGE))
        if not _looks_like_email(normalized):
            logger.info("Password reset requested for a malformed email")
            return generic

        account = self._accounts.get_by_email(normalized)
        if account is None:
            logger.info("Password reset requested for non-existent email: %s", normalized)
            self._audit("PasswordResetRequested", email=normalized, account_found=False)
            return generic

        token = generate_reset_token()
        self._accounts.set_reset_token(
            account.id,
            hash_token(token),
            self._clock.now() + self._reset_token_lifetime,
        )
        try:
            self._email_sender.send_password_reset(account.email, token)
        except Exception as e:
            # Token is stored; surfacing the failure would reveal that the account exists.
            logger.error(
                "Failed to send password reset email: user_id=%s", account.id, exc_info=True
            )
            self._audit("PasswordResetEmailFailed", account.id, error=type(e).__name__)
        else:
            logger.info("Password reset email sent: user_id=%s", account.id)

        self._audit("PasswordResetRequested", account.id, account_found=True)
        return generic

    def reset_password(self, token: str, new_password: str) -> Result[MessageResponse]:
        if not token or new_password is None:
            return _validation_error("token and newPassword are required", "body")
        if not _password_length_ok(new_password):
            return _validation_error("Invalid password length", "newPassword")

        if not token.isascii():
            logger.warning("Password reset failed - malformed token")
            return Result.failure(AuthErrorCode.TOKEN_NOT_FOUND, TOKEN_NOT_FOUND_MESSAGE)

        token_hash = hash_token(token)
        account = self._accounts.get_by_reset_token_hash(token_hash)
        if account is None:
            logger.warning("Password reset failed - token not found")
            return Result.failure(AuthErrorCode.TOKEN_NOT_FOUND, TOKEN_NOT_FOUND_MESSAGE)

        expiry = account.password_reset_token_expiry
        if expiry is None or expiry < self._clock.now():
            logger.warning("Password reset failed - token expired: user_id=%s", account.id)
            self._audit("PasswordResetFailed", account.id, reason=AuthErrorCode.TOKEN_EXPIRED)
            return Result.failure(AuthErrorCode.TOKEN_EXPIRED, TOKEN_EXPIRED_MESSAGE)

        if self._hasher.verify(new_password, account.password_hash, account.password_salt):
            logger.warning("Password reset failed - new password same as current: user_id=%s", account.id)
            self._audit("PasswordResetFailed", account.id, reason=AuthErrorCode.SAME_PASSWORD)
            return Result.failure(AuthErrorCode.SAME_PASSWORD, SAME_PASSWORD_MESSAGE)

        password_hash, password_salt = self._hasher.hash(new_password)
        if not self._accounts.reset_password(account.id, token_hash, password_hash, password_salt):
            logger.warning("Password reset failed - token consumed concurrently: user_id=%s", account.id)
            return Result.failure(AuthErrorCode.TOKEN_NOT_FOUND, TOKEN_NOT_FOUND_MESSAGE)

        self._audit("PasswordReset", account.id)
        logger.info("Password reset completed: user_id=%s", account.id)
        return Result.success(MessageResponse(message=RESET_PASSWORD_MESSAGE))

    def change_password(
        self,
        account_id: uuid.UUID,
        current_password: str,
        new_password: str,
    ) -> Result[MessageResponse]:
        """Change the password of an authenticated account after re-checking the current one."""
        if current_password is None or new_password is None:
            return _validation_error("currentPassword and newPassword are required", "body")
        if not _password_length_ok(new_password):
            return _validation_error("Invalid password length", "newPassword")

        account = self._accounts.get_by_id(account_id)
        if account is None:
            logger.warning("Password change failed - user not found: user_id=%s", account_id)
            return self._invalid_credentials()

        mismatch = Result.failure(
            AuthErrorCode.CURRENT_PASSWORD_MISMATCH, CURRENT_PASSWORD_MISMATCH_MESSAGE
        )
        if not self._hasher.verify(current_password, account.password_hash, account.password_salt):
            logger.warning("Password change failed - current password mismatch: user_id=%s", account.id)
            self._audit("PasswordChangeFailed", account.id, reason=AuthErrorCode.CURRENT_PASSWORD_MISMATCH)
            return mismatch
        if current_password == new_password:
            self._audit("PasswordChangeFailed", account.id, reason=AuthErrorCode.SAME_PASSWORD)
            return Result.failure(AuthErrorCode.SAME_PASSWORD, SAME_PASSWORD_MESSAGE)

        password_hash, password_salt = self._hasher.hash(new_password)
        if not self._accounts.change_password(
            account.id, account.password_hash, password_hash, password_salt
        ):
            logger.warning("Password change failed - password changed concurrently: user_id=%s", account.id)
            return mismatch

        self._audit("PasswordChanged", account.id)
        return Result.success(MessageResponse(message=CHANGE_PASSWORD_MESSAGE))

    # --------- Profile ----------
    def get_profile(self, account_id: uuid.UUID) -> Result[UserDto]:
        """Load the account behind an access token; deleted accounts yield UserNotFound."""
        account = self._accounts.get_by_id(account_id)
        if account is None:
            logger.warning("User not found: user_id=%s", account_id)
            return Result.failure(AuthErrorCode.USER_NOT_FOUND, USER_NOT_FOUND_MESSAGE)
        return Result.success(_to_user_dto(account))

    def update_user_name(self, account_id: uuid.UUID, user_name: str) -> Result[UserDto]:
        if user_name is None:
            return _validation_error("userName is required", "userName")
        name = user_name.strip()
        if not _user_name_ok(name):
            return _validation_error("Invalid user name", "userName")

        account = self._accounts.get_by_id(account_id)
        if account is None or not self._accounts.update_user_name(account_id, name):
            logger.warning("User update failed - user not found: user_id=%s", account_id)
            return Result.failure(AuthErrorCode.USER_NOT_FOUND, USER_NOT_FOUND_MESSAGE)

        self._audit("UserNameChanged", account_id)
        logger.info("User name updated: user_id=%s", account_id)
        return Result.success(_to_user_dto(replace(account, user_name=name)))
