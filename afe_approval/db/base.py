# noqa: F401 to ensure models are imported for metadata
from afe_approval.models.afe import Afe, AfeSigner
from afe_approval.models.audit import AuditLog
from afe_approval.models.user import User

__all__ = [
    "Afe",
    "AfeSigner",
    "AuditLog",
    "User",
]
