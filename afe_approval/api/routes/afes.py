import re
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlmodel import Session

from afe_approval.api.deps import get_current_active_user, get_db, get_request_context, http_error
from afe_approval.core.config import settings
from afe_approval.core.exceptions import WorkflowError
from afe_approval.models.afe import AfeStatus
from afe_approval.models.user import User
from afe_approval.schemas.afe import (
    AfeCreate,
    AfeList,
    AfeRead,
    PageInfoRead,
    PlacementRead,
    PlacementRequest,
    RejectRequest,
    SignerRead,
    SignersAssignRequest,
    SignRequest,
)
from afe_approval.schemas.user import UserSummary
from afe_approval.services.context import RequestContext
from afe_approval.services.coordinates import ScreenBox, ScreenPoint, box_to_pdf, point_to_pdf
from afe_approval.services.notification import NotificationService
from afe_approval.services.workflow import AfeDetail, WorkflowService

router = APIRouter(prefix="/afes", tags=["afes"])


def _services(session: Session) -> WorkflowService:
    notification_service = NotificationService.from_settings(settings)
    return WorkflowService(session, notification_service=notification_service)


def _summary(user: User | None) -> UserSummary | None:
    return UserSummary.model_validate(user) if user else None


def _afe_response(detail: AfeDetail) -> AfeRead:
    signers = []
    for slot in detail.signers:
        item = SignerRead.model_validate(slot)
        item.user = _summary(detail.users.get(slot.user_id))
        signers.append(item)
    response = AfeRead.model_validate(detail.afe)
    response.created_by = _summary(detail.users.get(detail.afe.created_by_id))
    response.signers = signers
    return response


def _safe_filename(name: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._ -]+", "_", name).strip()
    return cleaned or "afe.pdf"


@router.get("", response_model=AfeList)
def list_afes(
    status_filter: Optional[AfeStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    session: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> AfeList:
    service = _services(session)
    items, total, total_pages = service.list_afes(status=status_filter, page=page, page_size=page_size)
    users = service.load_users(afe.created_by_id for afe in items)
    responses = []
    for afe in items:
        response = AfeRead.model_validate(afe)
        response.created_by = _summary(users.get(afe.created_by_id))
        responses.append(response)
    return AfeList(items=responses, total=total, page=page, page_size=page_size, total_pages=total_pages)


@router.post("", response_model=AfeRead, status_code=status.HTTP_201_CREATED)
def create_afe(
    payload: AfeCreate,
    session: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> AfeRead:
    service = _services(session)
    try:
        afe = service.create_afe(ctx, payload)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return _afe_response(service.get_detail(afe.id))


@router.get("/{afe_id}", response_model=AfeRead)
def get_afe(
    afe_id: UUID,
    session: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> AfeRead:
    service = _services(session)
    try:
        detail = service.get_detail(afe_id)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return _afe_response(detail)


@router.delete("/{afe_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_afe(
    afe_id: UUID,
    session: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> Response:
    service = _services(session)
    try:
        service.delete_afe(ctx, afe_id)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{afe_id}/signers", response_model=AfeRead)
@router.put("/{afe_id}/signers", response_model=AfeRead)
def assign_signers(
    afe_id: UUID,
    payload: SignersAssignRequest,
    session: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> AfeRead:
    service = _services(session)
    try:
        service.assign_signers(ctx, afe_id, payload)
        return _afe_response(service.get_detail(afe_id))
    except WorkflowError as exc:
        raise http_error(exc) from exc


@router.post("/{afe_id}/sign", response_model=AfeRead)
def sign_afe(
    afe_id: UUID,
    payload: SignRequest,
    session: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> AfeRead:
    service = _services(session)
    try:
        service.sign(ctx, afe_id, payload)
        return _afe_response(service.get_detail(afe_id))
    except WorkflowError as exc:
        raise http_error(exc) from exc


@router.post("/{afe_id}/reject", response_model=AfeRead)
def reject_afe(
    afe_id: UUID,
    payload: RejectRequest,
    session: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> AfeRead:
    service = _services(session)
    try:
        service.reject(ctx, afe_id, payload.reason)
        return _afe_response(service.get_detail(afe_id))
    except WorkflowError as exc:
        raise http_error(exc) from exc


@router.post("/{afe_id}/cancel", response_model=AfeRead)
def cancel_afe(
    afe_id: UUID,
    session: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> AfeRead:
    service = _services(session)
    try:
        service.cancel(ctx, afe_id)
        return _afe_response(service.get_detail(afe_id))
    except WorkflowError as exc:
        raise http_error(exc) from exc


@router.post("/{afe_id}/remind")
def remind_signer(
    afe_id: UUID,
    session: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> dict[str, str]:
    service = _services(session)
    try:
        slot = service.remind(ctx, afe_id)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return {"status": "sent", "signer_id": str(slot.user_id)}


@router.get("/{afe_id}/pdf")
def get_pdf(
    afe_id: UUID,
    final: bool = False,
    preview: bool = False,
    rotate: Optional[int] = None,
    session: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Response:
    service = _services(session)
    try:
        payload = service.fetch_pdf(afe_id, final=final, preview=preview, rotate=rotate)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    headers = {
        "Content-Disposition": f'inline; filename="{_safe_filename(payload.filename)}"',
        "Cache-Control": payload.cache_control,
    }
    if payload.etag:
        headers["ETag"] = payload.etag
    return Response(content=payload.content, media_type="application/pdf", headers=headers)


@router.get("/{afe_id}/page-info", response_model=PageInfoRead)
def get_page_info(
    afe_id: UUID,
    session: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> PageInfoRead:
    service = _services(session)
    try:
        info = service.page_info(afe_id)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return PageInfoRead(
        page_count=info.page_count,
        width=info.width,
        height=info.height,
        rotation=info.rotation,
        title=info.title,
        author=info.author,
    )


@router.post("/{afe_id}/placements", response_model=PlacementRead)
def convert_placement(
    afe_id: UUID,
    payload: PlacementRequest,
    session: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> PlacementRead:
    service = _services(session)
    try:
        geometry = service.page_geometry(afe_id, payload.render_width, payload.render_height)
        if payload.kind == "point":
            point = point_to_pdf(ScreenPoint(x=payload.x, y=payload.y), geometry)
            return PlacementRead(x=point.x, y=point.y, pdf_width=geometry.pdf_width, pdf_height=geometry.pdf_height)
        box = box_to_pdf(
            ScreenBox(x=payload.x, y=payload.y, width=payload.width, height=payload.height),
            geometry,
        )
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return PlacementRead(
        x=box.x,
        y=box.y,
        width=box.width,
        height=box.height,
        pdf_width=geometry.pdf_width,
        pdf_height=geometry.pdf_height,
    )
