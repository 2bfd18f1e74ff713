from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from academy.models import User


current_endpoint: ContextVar[str] = ContextVar('current_endpoint', default='background')


@dataclass
class RequestContext:
    """Caller identity handed explicitly to every service operation.

    `resources` carries objects the router already loaded (for example the
    batch a request targets) so services do not fetch them twice.
    """

    user_id: int
    role: str
    user: User | None = None
    resources: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_user(cls, user: User) -> RequestContext:
        return cls(user_id=int(user.id), role=str(user.role), user=user)

    @property
    def is_admin(self) -> bool:
        return self.role == 'admin'

    @property
    def is_teacher(self) -> bool:
        return self.role == 'teacher'

    @property
    def is_student(self) -> bool:
        return self.role == 'student'

    def remember(self, key: str, value: Any) -> Any:
        self.resources[key] = value
        return value
