from dataclasses import dataclass
from typing import Iterable

from ..models import UserRole
from .errors import AuthorizationError


@dataclass(frozen=True)
class Caller:
    user_id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def require_role(caller: Caller, allowed: Iterable[UserRole]) -> None:
    if caller.role not in set(allowed):
        raise AuthorizationError("insufficient permissions")


def ensure_booking_access(caller: Caller, *, booker_id: int) -> None:
    """Bookings are visible to and cancellable by their booker or an admin."""
    if caller.user_id != booker_id and not caller.is_admin:
        raise AuthorizationError("not allowed to access this booking")


def ensure_turf_manager(caller: Caller, *, owner_id: int) -> None:
    """Turf and slot administration: the owning turf_owner, or an admin."""
    require_role(caller, (UserRole.TURF_OWNER, UserRole.ADMIN))
    if caller.user_id != owner_id and not caller.is_admin:
        raise AuthorizationError("not allowed to manage this turf")


def ensure_match_manager(caller: Caller, *, host_id: int) -> None:
    if caller.user_id != host_id and not caller.is_admin:
        raise AuthorizationError("only the host or an admin can manage this match")
