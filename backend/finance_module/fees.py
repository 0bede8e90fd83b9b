"""Fee headings, fee structures and the per-student fee assignment lookup."""

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from .capabilities import Action, Capabilities
from .exceptions import ConflictError, FinanceValidationError, NotFoundError
from .models import Center, FeeHeading, FeeStructure, Student, StudentFeeAssignment
from .status import ZERO, to_money

logger = logging.getLogger(__name__)


def get_center(db: Session, center_id: str) -> Center:
    if not center_id:
        raise FinanceValidationError("center_id is required")
    center = db.get(Center, center_id)
    if not center:
        raise NotFoundError("Center not found")
    return center


def create_fee_heading(
    db: Session,
    capabilities: Capabilities,
    *,
    center_id: str,
    heading_name: str,
    heading_code: str,
    description: str | None = None,
    sort_order: int = 0,
) -> FeeHeading:
    capabilities.require(Action.MANAGE_FEES, center_id)
    get_center(db, center_id)
    if not heading_name or not heading_name.strip():
        raise FinanceValidationError("heading_name is required")
    code = (heading_code or "").strip().upper()
    if not code:
        raise FinanceValidationError("heading_code is required")

    heading = FeeHeading(
        center_id=center_id,
        heading_name=heading_name.strip(),
        heading_code=code,
        description=description,
        sort_order=sort_order,
    )
    db.add(heading)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(f"Fee heading code {code} already exists for this center") from exc
    db.refresh(heading)
    return heading


def list_fee_headings(db: Session, center_id: str, active_only: bool = True) -> list[FeeHeading]:
    query = select(FeeHeading).where(FeeHeading.center_id == center_id)
    if active_only:
        query = query.where(FeeHeading.is_active.is_(True))
    return list(db.execute(query.order_by(FeeHeading.sort_order, FeeHeading.heading_name)).scalars())


def create_fee_structure(
    db: Session,
    capabilities: Capabilities,
    *,
    center_id: str,
    fee_heading_id: str,
    grade: str,
    amount,
    academic_year: str,
    effective_from: date,
    effective_to: date | None = None,
) -> FeeStructure:
    capabilities.require(Action.MANAGE_FEES, center_id)
    get_center(db, center_id)
    heading = db.get(FeeHeading, fee_heading_id)
    if not heading or heading.center_id != center_id:
        raise NotFoundError("Fee heading not found")
    if not heading.is_active:
        raise FinanceValidationError("Fee heading is inactive")
    value = to_money(amount)
    if value <= ZERO:
        raise FinanceValidationError("Fee amount must be greater than zero")
    if not grade or not academic_year:
        raise FinanceValidationError("grade and academic_year are required")
    if effective_to and effective_to < effective_from:
        raise FinanceValidationError("effective_to cannot be before effective_from")

    structure = FeeStructure(
        center_id=center_id,
        fee_heading_id=fee_heading_id,
        grade=str(grade).strip(),
        amount=value,
        academic_year=academic_year.strip(),
        effective_from=effective_from,
        effective_to=effective_to,
    )
    db.add(structure)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(
            f"A fee structure for {heading.heading_name}, grade {grade}, {academic_year} already exists"
        ) from exc
    db.refresh(structure)
    return structure


def assign_fee_structure(
    db: Session,
    capabilities: Capabilities,
    *,
    fee_structure_id: str,
    student_ids: list[str] | None = None,
    today: date | None = None,
) -> list[StudentFeeAssignment]:
    """Snapshot a fee structure's amount onto each student's assignment.

    Without ``student_ids`` every active student of the structure's grade in
    its center is assigned. A student's previous active assignment for the
    same heading and academic year is deactivated first, so later edits to the
    structure never change what was already assigned.
    """
    today = today or date.today()
    structure = db.get(FeeStructure, fee_structure_id)
    if not structure:
        raise NotFoundError("Fee structure not found")
    capabilities.require(Action.MANAGE_FEES, structure.center_id)
    if not structure.is_active:
        raise FinanceValidationError("Fee structure is inactive")
    if structure.effective_from > today or (structure.effective_to and structure.effective_to < today):
        raise FinanceValidationError("Fee structure is not effective on the assignment date")

    query = select(Student).where(Student.center_id == structure.center_id, Student.is_active.is_(True))
    if student_ids is None:
        query = query.where(Student.grade == structure.grade)
    else:
        query = query.where(Student.id.in_(student_ids))
    students = db.execute(query.order_by(Student.name)).scalars().all()
    if student_ids is not None and len(students) != len(set(student_ids)):
        raise NotFoundError("One or more students were not found in this center")

    created = []
    try:
        for student in students:
            previous = db.execute(
                select(StudentFeeAssignment).where(
                    StudentFeeAssignment.student_id == student.id,
                    StudentFeeAssignment.fee_heading_id == structure.fee_heading_id,
                    StudentFeeAssignment.academic_year == structure.academic_year,
                    StudentFeeAssignment.is_active.is_(True),
                )
            ).scalars().all()
            for row in previous:
                row.is_active = False
            # The deactivation has to reach the partial unique index first.
            db.flush()

            assignment = StudentFeeAssignment(
                student_id=student.id,
                fee_heading_id=structure.fee_heading_id,
                fee_structure_id=structure.id,
                amount=to_money(structure.amount),
                academic_year=structure.academic_year,
                assigned_date=today,
            )
            db.add(assignment)
            created.append(assignment)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Assigned fee structure {structure.id} to {len(created)} students")
    return created


def active_assignments(db: Session, student_id: str, academic_year: str) -> list[StudentFeeAssignment]:
    """Active fee assignments for one student, with their headings loaded."""
    return list(
        db.execute(
            select(StudentFeeAssignment)
            .options(joinedload(StudentFeeAssignment.fee_heading))
            .where(
                StudentFeeAssignment.student_id == student_id,
                StudentFeeAssignment.academic_year == academic_year,
                StudentFeeAssignment.is_active.is_(True),
            )
            .order_by(StudentFeeAssignment.created_at)
        ).scalars()
    )
