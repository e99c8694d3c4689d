import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from afe_approval.api.deps import http_error, require_roles
from afe_approval.core.config import settings
from afe_approval.core.exceptions import RenderError, WorkflowError
from afe_approval.models.user import User, UserRole
from afe_approval.schemas.afe import UploadRead
from afe_approval.services.pdf import get_pdf_info, is_pdf_bytes
from afe_approval.services.storage import PDF_ROOT, get_storage, new_pdf_name

logger = logging.getLogger("afe_approval.uploads")

router = APIRouter(prefix="/uploads", tags=["uploads"])


@router.post("", response_model=UploadRead, status_code=status.HTTP_201_CREATED)
async def upload_pdf(
    file: UploadFile = File(...),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
) -> UploadRead:
    filename = file.filename or ""
    if not filename.lower().endswith(".pdf"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only PDF files are allowed")

    content = await file.read(settings.upload_max_bytes + 1)
    if len(content) > settings.upload_max_bytes:
        limit_mb = settings.upload_max_bytes // (1024 * 1024)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"File exceeds {limit_mb}MB limit")
    if not is_pdf_bytes(content):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid PDF file")

    try:
        info = get_pdf_info(content)
    except RenderError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid PDF file") from exc

    try:
        url = get_storage().save_bytes(root=PDF_ROOT, name=new_pdf_name(), data=content)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    logger.info("PDF %s uploaded by %s as %s (%d pages)", filename, current_user.email, url, info.page_count)
    return UploadRead(url=url, filename=filename, size=len(content), page_count=info.page_count)
