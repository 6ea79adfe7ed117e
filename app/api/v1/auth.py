"""Auth routes (register, login, token refresh, password reset) and the Bearer dependency."""

from typing import Annotated, NoReturn

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import SessionLocal, get_db
from app.core.security import PasswordHasher
from app.core.tokens import TokenIssuer, TokenSettings
from app.schemas.auth import (
    ChangePasswordRequest,
    CurrentUser,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshTokenRequest,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TokenPairResponse,
)
from app.services.credentials import CredentialService
from app.services.email import build_email_sender
from app.services.results import AuthErrorCode, Result, ServiceError
from app.services.sql_store import SqlAccountStore, SqlAuditSink, SqlRoleStore

router = APIRouter()
security = HTTPBearer(auto_error=False)

STATUS_BY_CODE: dict[AuthErrorCode, int] = {
    AuthErrorCode.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    AuthErrorCode.EMAIL_ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    AuthErrorCode.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    AuthErrorCode.INVALID_REFRESH_TOKEN: status.HTTP_401_UNAUTHORIZED,
    AuthErrorCode.TOKEN_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthErrorCode.TOKEN_EXPIRED: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.SAME_PASSWORD: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.CURRENT_PASSWORD_MISMATCH: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.USER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


def get_token_issuer() -> TokenIssuer:
    return TokenIssuer(TokenSettings.from_settings(settings))


def build_credential_service(db: Session, tokens: TokenIssuer) -> CredentialService:
    """Wire the credential service to SQL stores on the given session."""
    return CredentialService(
        accounts=SqlAccountStore(db),
        roles=SqlRoleStore(db),
        audit=SqlAuditSink(SessionLocal),
        email_sender=build_email_sender(settings),
        hasher=PasswordHasher(),
        tokens=tokens,
        default_role_name=settings.DEFAULT_ROLE_NAME,
        reset_token_lifetime=settings.password_reset_lifetime,
    )


def get_credential_service(
    db: Annotated[Session, Depends(get_db)],
    tokens: Annotated[TokenIssuer, Depends(get_token_issuer)],
) -> CredentialService:
    """Dependency: credential service bound to the request's DB session."""
    return build_credential_service(db, tokens)


def _raise_error(error: ServiceError) -> NoReturn:
    status_code = STATUS_BY_CODE.get(error.code, status.HTTP_400_BAD_REQUEST)
    detail: dict = {"error": str(error.code), "message": error.message}
    if error.details:
        detail["details"] = error.details
    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    raise HTTPException(status_code=status_code, detail=detail, headers=headers)


def _unwrap(result: Result):
    if not result.ok:
        _raise_error(result.error)
    return result.value


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": "Unauthorized", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    tokens: Annotated[TokenIssuer, Depends(get_token_issuer)],
) -> CurrentUser:
    """Dependency: require a valid Bearer access token. Raises 401 if missing or invalid."""
    if credentials is None:
        raise _unauthorized("Not authenticated")
    claims = tokens.decode_access_token(credentials.credentials)
    if claims is None:
        raise _unauthorized("Invalid or expired token")
    return CurrentUser(id=claims.account_id, email=claims.email, roles=list(claims.roles))


ServiceDep = Annotated[CredentialService, Depends(get_credential_service)]


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, service: ServiceDep) -> RegisterResponse:
    """Create an account with the default role."""
    return _unwrap(service.register(body.email, body.user_name, body.password))


@router.post("/login", response_model=LoginResponse)
def login(body: LoginRequest, service: ServiceDep) -> LoginResponse:
    """
    Authenticate with email and password; returns an access/refresh token pair.
    Include the access token in the Authorization header as: Bearer <accessToken>
    """
    return _unwrap(service.login(body.email, body.password))


@router.post("/refresh", response_model=TokenPairResponse)
def refresh(body: RefreshTokenRequest, service: ServiceDep) -> TokenPairResponse:
    """Exchange a refresh token for a new pair; the presented token stops working."""
    return _unwrap(service.refresh(body.refresh_token))


@router.post("/logout", response_model=MessageResponse)
def logout(body: LogoutRequest, service: ServiceDep) -> MessageResponse:
    return _unwrap(service.logout(body.refresh_token))


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(body: ForgotPasswordRequest, service: ServiceDep) -> MessageResponse:
    """Always returns the same message, whether or not the email is registered."""
    return _unwrap(service.forgot_password(body.email))


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(body: ResetPasswordRequest, service: ServiceDep) -> MessageResponse:
    return _unwrap(service.reset_password(body.token, body.new_password))


@router.post("/change-password", response_model=MessageResponse)
def change_password(
    body: ChangePasswordRequest,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    service: ServiceDep,
) -> MessageResponse:
    return _unwrap(
        service.change_password(current_user.id, body.current_password, body.new_password)
    )


@router.get("/me", response_model=CurrentUser)
def me(current_user: Annotated[CurrentUser, Depends(get_current_user)]) -> CurrentUser:
    """Return the caller as described by their access token, without a database read."""
    return current_user
