from afe_approval.services.audit import AuditService
from afe_approval.services.notification import NotificationService
from afe_approval.services.user import UserService
from afe_approval.services.workflow import WorkflowService

__all__ = [
    "AuditService",
    "NotificationService",
    "UserService",
    "WorkflowService",
]
