import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from afe_approval.models.audit import AuditEntity, AuditLog

logger = logging.getLogger("afe_approval.audit")


class AuditService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def record_event(
        self,
        entity_type: AuditEntity | str,
        entity_id: UUID,
        action: str,
        actor_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict | None = None,
    ) -> AuditLog | None:
        """Persist one audit entry.

        Audit is best effort: a failure is logged and rolled back, never raised, so the
        operation being audited is not undone by it.
        """
        log = AuditLog(
            entity_type=entity_type.value if isinstance(entity_type, AuditEntity) else str(entity_type),
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details=details or {},
        )
        try:
            self.session.add(log)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Failed to write audit entry %s for %s %s", action, entity_type, entity_id)
            return None
        return log

    def list_events(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
        action: Optional[str] = None,
        actor_id: Optional[UUID] = None,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[AuditLog], int]:
        query = select(AuditLog)
        if entity_type:
            query = query.where(AuditLog.entity_type == entity_type)
        if entity_id:
            query = query.where(AuditLog.entity_id == entity_id)
        if action:
            query = query.where(AuditLog.action == action)
        if actor_id:
            query = query.where(AuditLog.actor_id == actor_id)
        if start_at:
            query = query.where(AuditLog.created_at >= start_at)
        if end_at:
            query = query.where(AuditLog.created_at <= end_at)

        total = self.session.exec(
            select(func.count()).select_from(query.subquery())
        ).one()

        items = self.session.exec(
            query.order_by(AuditLog.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return list(items), total

    def list_for_entity(self, entity_id: UUID, limit: int = 100) -> list[AuditLog]:
        items, _ = self.list_events(entity_id=entity_id, page=1, page_size=limit)
        return items
