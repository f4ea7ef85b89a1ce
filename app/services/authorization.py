"""
Role/action policy for appointments.

``authorize`` is a pure decision over (role, account, appointment, action).
It never touches the database beyond reading attributes already present on
the appointment, and it denies anything it does not explicitly allow.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..core.security import UserRole


class Action(str, Enum):
    VIEW = "view"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"
    CONFIRM = "confirm"
    MARK_ATTENDED = "mark_attended"
    MARK_NO_SHOW = "mark_no_show"
    PURGE = "purge"


OWNER_ACTIONS = frozenset({Action.VIEW, Action.CANCEL, Action.RESCHEDULE})
PRACTITIONER_ACTIONS = frozenset({Action.VIEW})


@dataclass(frozen=True)
class Caller:
    """Verified identity handed over by the authentication layer."""
    role: Optional[str]
    account_id: Optional[int]


def _coerce_role(role) -> Optional[UserRole]:
    if isinstance(role, UserRole):
        return role
    try:
        return UserRole(role)
    except ValueError:
        return None


def authorize(role, account_id: Optional[int], appointment, action) -> bool:
    """Return True when ``role``/``account_id`` may perform ``action`` on ``appointment``."""
    role = _coerce_role(role)
    try:
        action = Action(action)
    except ValueError:
        return False

    if role is None:
        return False

    if role == UserRole.ADMIN:
        return True

    if account_id is None:
        return False

    if appointment.user_id is not None and appointment.user_id == account_id:
        return action in OWNER_ACTIONS

    if role == UserRole.DOCTOR and appointment.practitioner_account_id == account_id:
        # TODO: let practitioners confirm and mark their own agenda once the
        # clinic agrees on the audit trail for it
        return action in PRACTITIONER_ACTIONS

    return False
