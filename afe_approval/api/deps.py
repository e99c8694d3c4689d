from typing import Annotated, Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from afe_approval.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    RenderError,
    StateError,
    StorageError,
    ValidationError,
    WorkflowError,
)
from afe_approval.db.session import get_session
from afe_approval.models.user import User, UserRole
from afe_approval.services.context import RequestContext
from afe_approval.services.user import UserService
from afe_approval.utils.security import decode_token

bearer_scheme = HTTPBearer(auto_error=False)

_ERROR_STATUS: dict[type[WorkflowError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    StateError: status.HTTP_409_CONFLICT,
    StorageError: status.HTTP_502_BAD_GATEWAY,
    RenderError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def http_error(exc: WorkflowError) -> HTTPException:
    for error_type, status_code in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def get_db() -> Session:
    yield from get_session()


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    session: Annotated[Session, Depends(get_db)],
) -> User:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        payload = decode_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    user = UserService(session).get_or_provision(
        external_id=str(payload["sub"]) if payload.get("sub") else None,
        email=payload.get("email"),
        full_name=payload.get("name"),
        role=payload.get("role"),
    )
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


def get_current_active_user(current_user: Annotated[User, Depends(get_current_user)]) -> User:
    if not current_user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User inactive")
    return current_user


def require_roles(*roles: UserRole) -> Callable[[User], User]:
    allowed = set(roles)

    def dependency(current_user: Annotated[User, Depends(get_current_active_user)]) -> User:
        if current_user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return dependency


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def get_request_context(
    request: Request,
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> RequestContext:
    return RequestContext(
        user=current_user,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
