from dataclasses import dataclass

from afe_approval.models.user import User, UserRole


@dataclass(frozen=True)
class RequestContext:
    """Who is acting and from where; passed explicitly into every service operation."""

    user: User
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.user.role == UserRole.ADMIN
