from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlmodel import Session

from afe_approval.api.deps import get_current_active_user, get_db, get_request_context, http_error, require_roles
from afe_approval.core.exceptions import WorkflowError
from afe_approval.models.user import User, UserRole
from afe_approval.schemas.user import (
    SavedSignature,
    SavedSignatureUpdate,
    UserCreate,
    UserList,
    UserRead,
    UserUpdate,
)
from afe_approval.services.context import RequestContext
from afe_approval.services.user import UserService

router = APIRouter(prefix="/users", tags=["users"])


def _user_response(user: User) -> UserRead:
    response = UserRead.model_validate(user)
    response.has_signature = bool(user.signature_image)
    return response


@router.get("", response_model=UserList)
def list_users(
    role: Optional[UserRole] = None,
    search: Optional[str] = None,
    signers_only: bool = False,
    session: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> UserList:
    users = UserService(session).list_users(role=role, search=search, signers_only=signers_only)
    items: List[UserRead] = [_user_response(user) for user in users]
    return UserList(items=items, total=len(items))


@router.get("/me", response_model=UserRead)
def read_me(current_user: User = Depends(get_current_active_user)) -> UserRead:
    return _user_response(current_user)


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    session: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> UserRead:
    try:
        user = UserService(session).create_user(ctx, payload)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return _user_response(user)


@router.patch("/{user_id}", response_model=UserRead)
def update_user(
    user_id: UUID,
    payload: UserUpdate,
    session: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    _admin: User = Depends(require_roles(UserRole.ADMIN)),
) -> UserRead:
    try:
        user = UserService(session).update_user(ctx, user_id, payload)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return _user_response(user)


@router.get("/me/signature", response_model=SavedSignature)
def get_signature(ctx: RequestContext = Depends(get_request_context)) -> SavedSignature:
    return SavedSignature(signature_image=ctx.user.signature_image)


@router.post("/me/signature", response_model=SavedSignature)
def save_signature(
    payload: SavedSignatureUpdate,
    session: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> SavedSignature:
    try:
        user = UserService(session).save_signature(ctx, payload.signature_image)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return SavedSignature(signature_image=user.signature_image)


@router.delete("/me/signature", status_code=status.HTTP_204_NO_CONTENT)
def delete_signature(
    session: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> Response:
    UserService(session).delete_signature(ctx)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
