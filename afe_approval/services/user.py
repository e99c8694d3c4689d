from __future__ import annotations

from typing import Iterable
from uuid import UUID

from sqlalchemy import or_
from sqlmodel import Session, func, select

from afe_approval.core.exceptions import AuthorizationError, NotFoundError, StateError, ValidationError
from afe_approval.models.audit import AuditEntity
from afe_approval.models.user import User, UserRole
from afe_approval.schemas.user import UserCreate, UserUpdate
from afe_approval.services.audit import AuditService
from afe_approval.services.context import RequestContext
from afe_approval.services.pdf import PNG_DATA_URL_PREFIX, validate_signature_image


class UserService:
    def __init__(self, session: Session, audit_service: AuditService | None = None) -> None:
        self.session = session
        self.audit_service = audit_service or AuditService(session)

    def list_users(
        self,
        role: UserRole | None = None,
        search: str | None = None,
        signers_only: bool = False,
    ) -> Iterable[User]:
        statement = select(User).where(User.is_active.is_(True))
        if role:
            statement = statement.where(User.role == role)
        elif signers_only:
            statement = statement.where(User.role.in_([UserRole.ADMIN, UserRole.SIGNER]))
        if search:
            pattern = f"%{search.strip().lower()}%"
            statement = statement.where(
                or_(func.lower(User.full_name).like(pattern), func.lower(User.email).like(pattern))
            )
        statement = statement.order_by(User.full_name)
        return self.session.exec(statement).all()

    def get_user(self, user_id: str | UUID) -> User:
        user = self.session.get(User, UUID(str(user_id)))
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_by_email(self, email: str) -> User | None:
        return self.session.exec(select(User).where(User.email == email.strip().lower())).first()

    def create_user(self, ctx: RequestContext, payload: UserCreate) -> User:
        self._require_admin(ctx)
        normalized_email = payload.email.strip().lower()
        if self.get_by_email(normalized_email):
            raise ValidationError("A user with this email already exists")

        user = User(
            email=normalized_email,
            full_name=payload.full_name,
            title=payload.title.strip() if payload.title else None,
            role=payload.role,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        self.audit_service.record_event(
            AuditEntity.USER,
            user.id,
            "USER_CREATED",
            actor_id=ctx.user.id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            details={"email": user.email, "role": user.role.value},
        )
        return user

    def update_user(self, ctx: RequestContext, user_id: str | UUID, payload: UserUpdate) -> User:
        self._require_admin(ctx)
        user = self.get_user(user_id)
        changes = payload.model_dump(exclude_unset=True)
        previous = {"role": user.role.value, "title": user.title}

        new_role = changes.get("role")
        if new_role is not None and user.role == UserRole.ADMIN and new_role != UserRole.ADMIN:
            admins = self.session.exec(
                select(func.count()).select_from(User).where(User.role == UserRole.ADMIN, User.is_active.is_(True))
            ).one()
            if int(admins or 0) <= 1:
                raise StateError("Cannot remove the last admin")
            user.role = new_role
        elif new_role is not None:
            user.role = new_role
        if "title" in changes:
            title = changes["title"]
            user.title = title.strip() if title else None

        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        self.audit_service.record_event(
            AuditEntity.USER,
            user.id,
            "USER_UPDATED",
            actor_id=ctx.user.id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            details={"previous": previous, "changes": {k: getattr(v, "value", v) for k, v in changes.items()}},
        )
        return user

    def get_or_provision(
        self,
        *,
        external_id: str | None,
        email: str | None,
        full_name: str | None = None,
        role: str | None = None,
    ) -> User | None:
        """Find the user behind an identity-provider token, creating it on first sight."""
        user = None
        if external_id:
            user = self.session.exec(select(User).where(User.external_id == external_id)).first()
        if user is None and email:
            user = self.get_by_email(email)
            if user is not None and external_id and not user.external_id:
                user.external_id = external_id
                self.session.add(user)
                self.session.commit()
                self.session.refresh(user)
        if user is not None or not email:
            return user

        try:
            provisioned_role = UserRole(str(role).upper()) if role else UserRole.SIGNER
        except ValueError:
            provisioned_role = UserRole.SIGNER
        user = User(
            email=email.strip().lower(),
            full_name=full_name or email,
            role=provisioned_role,
            external_id=external_id,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    # Saved signature

    def get_signature(self, ctx: RequestContext) -> str | None:
        return ctx.user.signature_image

    def save_signature(self, ctx: RequestContext, signature_image: str) -> User:
        value = (signature_image or "").strip()
        if not value.startswith(PNG_DATA_URL_PREFIX):
            raise ValidationError("Signature must be a PNG data URL")
        validate_signature_image(value)
        user = self.get_user(ctx.user.id)
        user.signature_image = value
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        self.audit_service.record_event(
            AuditEntity.USER,
            user.id,
            "SIGNATURE_UPDATED",
            actor_id=user.id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )
        return user

    def delete_signature(self, ctx: RequestContext) -> User:
        user = self.get_user(ctx.user.id)
        user.signature_image = None
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        self.audit_service.record_event(
            AuditEntity.USER,
            user.id,
            "SIGNATURE_REMOVED",
            actor_id=user.id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )
        return user

    @staticmethod
    def _require_admin(ctx: RequestContext) -> None:
        if not ctx.is_admin:
            raise AuthorizationError("Admin access required")
