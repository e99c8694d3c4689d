from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import delete, update
from sqlmodel import Session, func, select

from afe_approval.core.config import Settings, get_settings
from afe_approval.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    StateError,
    StorageError,
    ValidationError,
)
from afe_approval.models.afe import TERMINAL_STATUSES, Afe, AfeSigner, AfeStatus, SignerStatus
from afe_approval.models.audit import AuditEntity
from afe_approval.models.user import User
from afe_approval.schemas.afe import AfeCreate, SignersAssignRequest, SignRequest
from afe_approval.services.audit import AuditService
from afe_approval.services.context import RequestContext
from afe_approval.services.coordinates import PageGeometry
from afe_approval.services.notification import EmailAttachment, NotificationKind, NotificationService
from afe_approval.services.pdf import (
    PdfInfo,
    annotate_pdf,
    annotation_for_slot,
    auto_fix_rotation,
    get_pdf_info,
    is_pdf_bytes,
    rotate_pdf,
    validate_signature_image,
)
from afe_approval.services.signer_chain import SignerAssignment, SignerChain, initial_statuses
from afe_approval.services.storage import PDF_ROOT, StorageBackend, final_pdf_name, get_storage

logger = logging.getLogger("afe_approval.workflow")

_PLACEMENT_FIELDS = (
    "signature_x",
    "signature_y",
    "signature_width",
    "signature_height",
    "title_x",
    "title_y",
    "title_width",
    "title_height",
    "date_x",
    "date_y",
    "date_width",
    "date_height",
)
_SIGNATURE_BOX_FIELDS = _PLACEMENT_FIELDS[:4]


@dataclass
class AfeDetail:
    afe: Afe
    signers: list[AfeSigner]
    users: dict[UUID, User]


@dataclass
class SignOutcome:
    afe: Afe
    slot: AfeSigner
    next_slot: AfeSigner | None
    final_pdf_url: str | None = None


@dataclass
class PdfPayload:
    content: bytes
    filename: str
    cache_control: str
    etag: str | None = None


class WorkflowService:
    """Signer-chain transitions for AFEs.

    Every transition is committed in one transaction made of guarded UPDATE statements:
    each statement names the status (and, for the AFE row, the version) it expects to
    overwrite, and the whole transaction is rolled back with :class:`StateError` when a
    concurrent request got there first.  Audit entries, notifications and final-PDF
    generation run after the commit and only log their failures.
    """

    def __init__(
        self,
        session: Session,
        notification_service: NotificationService | None = None,
        audit_service: AuditService | None = None,
        storage: StorageBackend | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.notification_service = notification_service or NotificationService.from_settings(self.settings)
        self.audit_service = audit_service or AuditService(session)
        self.storage = storage or get_storage()

    # ------------------------------------------------------------------ queries

    def get_afe(self, afe_id: str | UUID) -> Afe:
        afe = self.session.get(Afe, UUID(str(afe_id)))
        if not afe:
            raise NotFoundError("AFE not found")
        return afe

    def list_signers(self, afe: Afe, status: SignerStatus | None = None) -> list[AfeSigner]:
        statement = select(AfeSigner).where(AfeSigner.afe_id == afe.id)
        if status is not None:
            statement = statement.where(AfeSigner.status == status)
        statement = statement.order_by(AfeSigner.signing_order)
        return list(self.session.exec(statement).all())

    def load_users(self, user_ids: Iterable[UUID]) -> dict[UUID, User]:
        ids = {user_id for user_id in user_ids if user_id}
        if not ids:
            return {}
        users = self.session.exec(select(User).where(User.id.in_(ids))).all()
        return {user.id: user for user in users}

    def get_detail(self, afe_id: str | UUID) -> AfeDetail:
        afe = self.get_afe(afe_id)
        signers = self.list_signers(afe)
        users = self.load_users([afe.created_by_id, *(slot.user_id for slot in signers)])
        return AfeDetail(afe=afe, signers=signers, users=users)

    def list_afes(
        self,
        status: AfeStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Afe], int, int]:
        """Return ``(items, total, total_pages)``, newest first."""
        query = select(Afe)
        if status:
            query = query.where(Afe.status == status)
        total = self.session.exec(select(func.count()).select_from(query.subquery())).one()
        items = self.session.exec(
            query.order_by(Afe.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
        ).all()
        total_pages = math.ceil(total / page_size) if page_size else 0
        return list(items), int(total), total_pages

    # ------------------------------------------------------------------ create / delete

    def create_afe(self, ctx: RequestContext, payload: AfeCreate) -> Afe:
        self._require_admin(ctx)
        try:
            content = self.storage.load_bytes(payload.original_pdf_url)
        except StorageError as exc:
            raise ValidationError("Original PDF was not found in storage") from exc
        if not is_pdf_bytes(content):
            raise ValidationError("Original file is not a PDF")

        afe = Afe(
            name=payload.name,
            afe_number=payload.afe_number.strip() if payload.afe_number else None,
            original_pdf_url=payload.original_pdf_url,
            created_by_id=ctx.user.id,
        )
        self.session.add(afe)
        self.session.commit()
        self.session.refresh(afe)
        self._audit(ctx, afe, "CREATED", {"afe_name": afe.name, "afe_number": afe.afe_number})
        return afe

    def delete_afe(self, ctx: RequestContext, afe_id: str | UUID) -> None:
        self._require_admin(ctx)
        afe = self.get_afe(afe_id)
        if afe.status != AfeStatus.DRAFT:
            raise StateError("Only draft AFEs can be deleted")
        snapshot = {"afe_name": afe.name, "afe_number": afe.afe_number}
        afe_uuid = afe.id
        connection = self.session.connection()
        try:
            connection.execute(delete(AfeSigner).where(AfeSigner.afe_id == afe_uuid))
            result = connection.execute(
                delete(Afe).where(
                    Afe.id == afe_uuid,
                    Afe.status == AfeStatus.DRAFT,
                    Afe.version == afe.version,
                )
            )
            self._expect_one(result, "AFE changed while it was being deleted")
            self.session.expunge(afe)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.audit_service.record_event(
            AuditEntity.AFE,
            afe_uuid,
            "DELETED",
            actor_id=ctx.user.id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            details=snapshot,
        )

    # ------------------------------------------------------------------ signer chain

    def assign_signers(
        self,
        ctx: RequestContext,
        afe_id: str | UUID,
        payload: SignersAssignRequest,
    ) -> list[AfeSigner]:
        """Replace the signer chain of a draft AFE and open it for signatures."""
        self._require_admin(ctx)
        afe = self.get_afe(afe_id)
        existing = self.list_signers(afe)
        if any(slot.status == SignerStatus.SIGNED for slot in existing):
            raise StateError("Cannot modify signers after signing has begun")
        if afe.status != AfeStatus.DRAFT:
            raise StateError("Can only assign signers to draft AFEs")

        assignments = [
            SignerAssignment(user_id=item.user_id, signing_order=item.signing_order) for item in payload.signers
        ]
        statuses = initial_statuses(assignments)
        users = self.load_users(item.user_id for item in assignments)
        missing = [str(item.user_id) for item in assignments if item.user_id not in users]
        if missing:
            raise ValidationError(f"Unknown users: {', '.join(missing)}")
        inactive = [users[item.user_id].email for item in assignments if not users[item.user_id].is_active]
        if inactive:
            raise ValidationError(f"Inactive users cannot sign: {', '.join(inactive)}")

        expected_version = afe.version
        for slot in existing:
            self.session.expunge(slot)
        connection = self.session.connection()
        try:
            connection.execute(delete(AfeSigner).where(AfeSigner.afe_id == afe.id))
            slots = []
            for item in sorted(payload.signers, key=lambda entry: entry.signing_order):
                placement = item.model_dump(include=set(_PLACEMENT_FIELDS))
                slot = AfeSigner(
                    afe_id=afe.id,
                    user_id=item.user_id,
                    signing_order=item.signing_order,
                    status=statuses[item.signing_order],
                    **placement,
                )
                self.session.add(slot)
                slots.append(slot)
            self.session.flush()
            result = connection.execute(
                update(Afe)
                .where(Afe.id == afe.id, Afe.status == AfeStatus.DRAFT, Afe.version == expected_version)
                .values(status=AfeStatus.PENDING, version=expected_version + 1, updated_at=datetime.now(timezone.utc))
            )
            self._expect_one(result, "AFE changed while signers were being assigned")
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(afe)
        for slot in slots:
            self.session.refresh(slot)
        self._audit(
            ctx,
            afe,
            "SIGNERS_ASSIGNED",
            {
                "signers": [
                    {"user_id": str(slot.user_id), "signing_order": slot.signing_order} for slot in slots
                ]
            },
        )
        self._notify_signer(afe, slots[0], users.get(slots[0].user_id), NotificationKind.SIGNER_ACTIVATED)
        return slots

    def sign(self, ctx: RequestContext, afe_id: str | UUID, payload: SignRequest) -> SignOutcome:
        afe = self.get_afe(afe_id)
        chain = SignerChain(self.list_signers(afe))
        slot = chain.check_can_act(afe.status, ctx.user.id)

        signature_image = (payload.signature_image or "").strip() or ctx.user.signature_image
        if not signature_image:
            raise ValidationError("A signature image is required")
        validate_signature_image(signature_image)

        values: dict = {
            "status": SignerStatus.SIGNED,
            "signature_image": signature_image,
            "signed_at": datetime.now(timezone.utc),
            "ip_address": ctx.ip_address,
            "user_agent": ctx.user_agent,
            "updated_at": datetime.now(timezone.utc),
        }
        # fields given at signing time win; the rest keep what was set at assignment
        for name in _SIGNATURE_BOX_FIELDS:
            given = getattr(payload, name)
            values[name] = given if given is not None else getattr(slot, name)

        next_slot = chain.next_after(slot)
        new_status = AfeStatus.PARTIALLY_SIGNED if next_slot else AfeStatus.FULLY_SIGNED
        slot_id = slot.id
        next_slot_id = next_slot.id if next_slot else None
        connection = self.session.connection()
        try:
            result = connection.execute(
                update(AfeSigner)
                .where(AfeSigner.id == slot_id, AfeSigner.status == SignerStatus.ACTIVE)
                .values(**values)
            )
            self._expect_one(result, "Signer slot changed while signing")
            if next_slot_id:
                result = connection.execute(
                    update(AfeSigner)
                    .where(AfeSigner.id == next_slot_id, AfeSigner.status == SignerStatus.PENDING)
                    .values(status=SignerStatus.ACTIVE, updated_at=datetime.now(timezone.utc))
                )
                self._expect_one(result, "Next signer slot changed while signing")
            self._transition(connection, afe, new_status)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(afe)
        slot = self.session.get(AfeSigner, slot_id)
        self.session.refresh(slot)
        if next_slot_id:
            next_slot = self.session.get(AfeSigner, next_slot_id)
            self.session.refresh(next_slot)
        logger.info("AFE %s signed by %s (order %s) -> %s", afe.id, ctx.user.email, slot.signing_order, afe.status.value)
        self._audit(
            ctx,
            afe,
            "SIGNED",
            {"signing_order": slot.signing_order, "status": afe.status.value},
        )

        outcome = SignOutcome(afe=afe, slot=slot, next_slot=next_slot)
        if next_slot is not None:
            users = self.load_users([next_slot.user_id])
            self._notify_signer(afe, next_slot, users.get(next_slot.user_id), NotificationKind.SIGNER_ACTIVATED)
            return outcome

        final_content: bytes | None = None
        try:
            outcome.final_pdf_url, final_content = self._generate_final_pdf(afe)
        except Exception as exc:
            logger.exception("Final PDF generation failed for AFE %s", afe.id)
            self._audit(ctx, afe, "FINAL_PDF_FAILED", {"reason": str(exc)})
        else:
            self._audit(ctx, afe, "FINAL_PDF_GENERATED", {"final_pdf_url": outcome.final_pdf_url})
        self._notify_completion(afe, final_content)
        return outcome

    def reject(
        self,
        ctx: RequestContext,
        afe_id: str | UUID,
        reason: str | None = None,
    ) -> Afe:
        afe = self.get_afe(afe_id)
        chain = SignerChain(self.list_signers(afe))
        slot = chain.check_can_act(afe.status, ctx.user.id)
        reason = (reason or "").strip() or None
        if reason and len(reason) > 1000:
            raise ValidationError("Rejection reason is limited to 1000 characters")

        slot_id = slot.id
        connection = self.session.connection()
        try:
            result = connection.execute(
                update(AfeSigner)
                .where(AfeSigner.id == slot_id, AfeSigner.status == SignerStatus.ACTIVE)
                .values(
                    status=SignerStatus.REJECTED,
                    signed_at=datetime.now(timezone.utc),
                    ip_address=ctx.ip_address,
                    user_agent=ctx.user_agent,
                    reject_reason=reason,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            self._expect_one(result, "Signer slot changed while rejecting")
            self._transition(connection, afe, AfeStatus.REJECTED)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(afe)
        logger.info("AFE %s rejected by %s", afe.id, ctx.user.email)
        self._audit(ctx, afe, "REJECTED", {"signing_order": slot.signing_order, "reason": reason})
        creator = self.load_users([afe.created_by_id]).get(afe.created_by_id)
        if creator:
            self._send(
                NotificationKind.AFE_REJECTED,
                creator.email,
                self._notification_data(
                    afe,
                    rejected_by=ctx.user.full_name or ctx.user.email,
                    reject_reason=reason,
                ),
            )
        return afe

    def cancel(self, ctx: RequestContext, afe_id: str | UUID) -> Afe:
        self._require_admin(ctx)
        afe = self.get_afe(afe_id)
        if afe.status in TERMINAL_STATUSES:
            raise StateError(f"AFE is {afe.status.value} and cannot be cancelled")
        previous_status = afe.status
        connection = self.session.connection()
        try:
            self._transition(connection, afe, AfeStatus.CANCELLED)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(afe)
        self._audit(ctx, afe, "CANCELLED", {"previous_status": previous_status.value})
        return afe

    def remind(self, ctx: RequestContext, afe_id: str | UUID) -> AfeSigner:
        """Re-send the activation e-mail to the signer whose turn it is."""
        self._require_admin(ctx)
        afe = self.get_afe(afe_id)
        active = SignerChain(self.list_signers(afe)).active_slot()
        if active is None:
            raise StateError("No active signer to remind")
        allowed = {AfeStatus.PENDING}
        if self.settings.remind_allow_partially_signed:
            allowed.add(AfeStatus.PARTIALLY_SIGNED)
        if afe.status not in allowed:
            raise StateError(f"Reminders cannot be sent while the AFE is {afe.status.value}")

        user = self.load_users([active.user_id]).get(active.user_id)
        self._notify_signer(afe, active, user, NotificationKind.REMINDER)
        self._audit(
            ctx,
            afe,
            "REMINDER_SENT",
            {"signer_id": str(active.user_id), "signer_email": user.email if user else None},
        )
        return active

    # ------------------------------------------------------------------ PDFs

    def render_signed_pdf(self, afe: Afe) -> bytes:
        """Original PDF with every SIGNED slot drawn onto the first page, in signing order."""
        original = self.storage.load_bytes(afe.original_pdf_url)
        signed = self.list_signers(afe, status=SignerStatus.SIGNED)
        users = self.load_users(slot.user_id for slot in signed)
        annotations = [annotation_for_slot(slot, users.get(slot.user_id)) for slot in signed]
        return annotate_pdf(original, annotations)

    def ensure_final_pdf(self, afe: Afe) -> str:
        if afe.final_pdf_url:
            return afe.final_pdf_url
        if afe.status != AfeStatus.FULLY_SIGNED:
            raise StateError("Final PDF is only produced for fully signed AFEs")
        url, _ = self._generate_final_pdf(afe)
        return url

    def _generate_final_pdf(self, afe: Afe) -> tuple[str, bytes]:
        content = self.render_signed_pdf(afe)
        path = self.storage.save_bytes(root=PDF_ROOT, name=final_pdf_name(afe.id), data=content)
        connection = self.session.connection()
        try:
            result = connection.execute(
                update(Afe)
                .where(
                    Afe.id == afe.id,
                    Afe.status == AfeStatus.FULLY_SIGNED,
                    Afe.final_pdf_url.is_(None),
                )
                .values(final_pdf_url=path, updated_at=datetime.now(timezone.utc))
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(afe)
        if result.rowcount != 1:
            # generated concurrently by another request; keep the stored one
            logger.info("Final PDF for AFE %s already recorded at %s", afe.id, afe.final_pdf_url)
            return afe.final_pdf_url, self.storage.load_bytes(afe.final_pdf_url)
        logger.info("Final PDF for AFE %s stored at %s", afe.id, path)
        return path, content

    def fetch_pdf(
        self,
        afe_id: str | UUID,
        *,
        final: bool = False,
        preview: bool = False,
        rotate: int | None = None,
    ) -> PdfPayload:
        afe = self.get_afe(afe_id)
        etag = None
        if final:
            if not afe.final_pdf_url and afe.status == AfeStatus.FULLY_SIGNED:
                self.ensure_final_pdf(afe)
            if not afe.final_pdf_url:
                raise NotFoundError("Final signed PDF not available yet")
            content = self.storage.load_bytes(afe.final_pdf_url)
            filename = f"{afe.name}-signed.pdf"
        elif preview and (signed := self.list_signers(afe, status=SignerStatus.SIGNED)):
            content = self.render_signed_pdf(afe)
            filename = f"{afe.name}-preview.pdf"
            latest = max(slot.signed_at for slot in signed if slot.signed_at)
            etag = f'"{afe.id}-{latest.timestamp():.6f}"'
        else:
            content = self.storage.load_bytes(afe.original_pdf_url)
            filename = f"{afe.name}.pdf"

        if rotate is not None:
            content = rotate_pdf(content, rotate)
        else:
            content = auto_fix_rotation(content)

        return PdfPayload(
            content=content,
            filename=filename,
            cache_control="no-cache" if preview else "private, max-age=3600",
            etag=etag,
        )

    def page_info(self, afe_id: str | UUID) -> PdfInfo:
        afe = self.get_afe(afe_id)
        return get_pdf_info(self.storage.load_bytes(afe.original_pdf_url))

    def page_geometry(self, afe_id: str | UUID, render_width: float, render_height: float) -> PageGeometry:
        """Geometry of the AFE's first page as rendered on a canvas of the given size."""
        info = self.page_info(afe_id)
        return PageGeometry(
            pdf_width=info.width,
            pdf_height=info.height,
            render_width=render_width,
            render_height=render_height,
        )

    # ------------------------------------------------------------------ helpers

    def _transition(self, connection, afe: Afe, new_status: AfeStatus) -> None:
        result = connection.execute(
            update(Afe)
            .where(Afe.id == afe.id, Afe.status == afe.status, Afe.version == afe.version)
            .values(status=new_status, version=afe.version + 1, updated_at=datetime.now(timezone.utc))
        )
        self._expect_one(result, "AFE changed concurrently, please retry")

    @staticmethod
    def _expect_one(result, message: str) -> None:
        if result.rowcount != 1:
            raise StateError(message)

    @staticmethod
    def _require_admin(ctx: RequestContext) -> None:
        if not ctx.is_admin:
            raise AuthorizationError("Admin access required")

    def _audit(self, ctx: RequestContext, afe: Afe, action: str, details: dict | None = None) -> None:
        self.audit_service.record_event(
            AuditEntity.AFE,
            afe.id,
            action,
            actor_id=ctx.user.id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            details=details,
        )

    def _notification_data(self, afe: Afe, **extra) -> dict:
        data = {"afe_id": str(afe.id), "afe_name": afe.name, "afe_number": afe.afe_number}
        data.update(extra)
        return data

    def _send(self, kind: NotificationKind, to: str, data: dict, attachment: EmailAttachment | None = None) -> bool:
        try:
            return self.notification_service.send(kind, to, data, attachment)
        except Exception:
            logger.exception("Notification %s to %s failed", kind, to)
            return False

    def _notify_signer(self, afe: Afe, slot: AfeSigner, user: User | None, kind: NotificationKind) -> None:
        if user is None:
            logger.warning("Signer %s of AFE %s has no user record", slot.user_id, afe.id)
            return
        self._send(kind, user.email, self._notification_data(afe, recipient_name=user.full_name))

    def completion_recipients(self, afe: Afe) -> list[str]:
        creator = self.load_users([afe.created_by_id]).get(afe.created_by_id)
        recipients: Sequence[str] = [creator.email] if creator else []
        return [*recipients, *self.settings.completion_distribution_list]

    def _notify_completion(self, afe: Afe, final_content: bytes | None) -> None:
        attachment = None
        if final_content:
            attachment = EmailAttachment(filename=f"{afe.name}-signed.pdf", content=final_content)
        data = self._notification_data(afe, has_attachment=attachment is not None)
        try:
            self.notification_service.send_bulk(
                NotificationKind.AFE_FULLY_SIGNED,
                self.completion_recipients(afe),
                data,
                attachment,
            )
        except Exception:
            logger.exception("Completion notifications for AFE %s failed", afe.id)
