from afe_approval.schemas import afe, audit, common, user

__all__ = [
    "afe",
    "audit",
    "common",
    "user",
]
