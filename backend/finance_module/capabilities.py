"""Explicit capability sets handed to every engine call.

The dashboard stores role-based feature toggles per center; they are resolved
once at the edge (see ``middleware.py``) into a ``Capabilities`` value so the
engine itself never consults session state.

Parents never see center-wide figures. They hold ``accounts.read`` limited to
the students named in their token, which covers those students' invoices and
payments only.
"""

import enum
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from .exceptions import CapabilityError
from .models import CenterFeaturePermission


FINANCE_FEATURE = "finance"


class Role(str, enum.Enum):
    ADMIN = "admin"
    CENTER = "center"
    TEACHER = "teacher"
    PARENT = "parent"


class Action(str, enum.Enum):
    GENERATE_INVOICES = "invoices.generate"
    CANCEL_INVOICES = "invoices.cancel"
    RECORD_PAYMENTS = "payments.record"
    MANAGE_FEES = "fees.manage"
    RECORD_EXPENSES = "expenses.record"
    APPROVE_EXPENSES = "expenses.approve"
    READ_REPORTS = "reports.read"
    READ_ACCOUNTS = "accounts.read"


ROLE_ACTIONS: dict[Role, frozenset[Action]] = {
    Role.ADMIN: frozenset(Action),
    Role.CENTER: frozenset(Action),
    Role.TEACHER: frozenset(),
    Role.PARENT: frozenset({Action.READ_ACCOUNTS}),
}


@dataclass(frozen=True)
class Capabilities:
    actions: frozenset[Action]
    # None grants every center / every student.
    center_ids: frozenset[str] | None = None
    student_ids: frozenset[str] | None = None

    def allows(self, action: Action, center_id: str) -> bool:
        if action not in self.actions:
            return False
        return self.center_ids is None or center_id in self.center_ids

    def require_action(self, action: Action) -> None:
        if action not in self.actions:
            raise CapabilityError(f"Action '{action.value}' is not permitted")

    def require(self, action: Action, center_id: str) -> None:
        self.require_action(action)
        if self.center_ids is not None and center_id not in self.center_ids:
            raise CapabilityError("Center is outside the caller's scope")

    def require_account(self, center_id: str, student_id: str | None) -> None:
        """Allow reading one student's invoices and payments.

        Report readers see every student of their centers. Anyone else needs
        ``accounts.read`` and must name a student inside ``student_ids``.
        """
        if self.allows(Action.READ_REPORTS, center_id):
            return
        self.require(Action.READ_ACCOUNTS, center_id)
        if not student_id:
            raise CapabilityError("student_id is required for this caller")
        if self.student_ids is not None and student_id not in self.student_ids:
            raise CapabilityError("Student is outside the caller's scope")

    @classmethod
    def full(cls) -> "Capabilities":
        return cls(actions=frozenset(Action))


def finance_enabled(db: Session, center_id: str) -> bool:
    # Centers without an explicit row keep the default (enabled).
    row = db.execute(
        select(CenterFeaturePermission.is_enabled).where(
            CenterFeaturePermission.center_id == center_id,
            CenterFeaturePermission.feature_name == FINANCE_FEATURE,
        )
    ).scalar_one_or_none()
    return True if row is None else bool(row)


def resolve_capabilities(
    db: Session,
    *,
    role: Role,
    center_id: str | None,
    student_ids: list[str] | tuple[str, ...] | None = None,
) -> Capabilities:
    actions = ROLE_ACTIONS.get(role, frozenset())
    if role is Role.ADMIN:
        return Capabilities(actions=actions)
    if not center_id:
        return Capabilities(actions=frozenset(), center_ids=frozenset())
    if not finance_enabled(db, center_id):
        actions = frozenset()
    scoped_students = frozenset(student_ids or ()) if role is Role.PARENT else None
    return Capabilities(actions=actions, center_ids=frozenset({center_id}), student_ids=scoped_students)
