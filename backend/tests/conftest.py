from datetime import date
from decimal import Decimal

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from finance_module import router
from finance_module.capabilities import Capabilities
from finance_module.database import Base, build_engine, get_db_session
from finance_module.models import Center, FeeHeading, FeeStructure, Student, StudentFeeAssignment
from finance_module.security import create_access_token


ACADEMIC_YEAR = "2023-2024"
CENTER_ID = "c1a2b3c4-0000-4000-8000-000000000001"
OTHER_CENTER_ID = "d9e8f7a6-0000-4000-8000-000000000002"


@pytest.fixture
def engine():
    eng = build_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def caps():
    return Capabilities.full()


@pytest.fixture
def center(db):
    center = Center(id=CENTER_ID, name="Riverside Learning Center")
    db.add(center)
    db.add(Center(id=OTHER_CENTER_ID, name="Hillview Learning Center"))
    db.commit()
    return center


@pytest.fixture
def add_student(db, center):
    def _add(name, grade="5", center_id=CENTER_ID, is_active=True):
        student = Student(center_id=center_id, name=name, grade=grade, is_active=is_active)
        db.add(student)
        db.commit()
        return student

    return _add


@pytest.fixture
def give_fees(db, center):
    """Attach active fee assignments to a student, creating headings and structures on demand."""

    def _give(student, fees, academic_year=ACADEMIC_YEAR):
        for code, amount in fees.items():
            heading = db.execute(
                select(FeeHeading).where(FeeHeading.center_id == student.center_id, FeeHeading.heading_code == code)
            ).scalar_one_or_none()
            if heading is None:
                heading = FeeHeading(center_id=student.center_id, heading_name=code.title(), heading_code=code)
                db.add(heading)
                db.flush()
            structure = db.execute(
                select(FeeStructure).where(
                    FeeStructure.fee_heading_id == heading.id,
                    FeeStructure.grade == student.grade,
                    FeeStructure.academic_year == academic_year,
                )
            ).scalar_one_or_none()
            if structure is None:
                structure = FeeStructure(
                    center_id=student.center_id,
                    fee_heading_id=heading.id,
                    grade=student.grade,
                    amount=Decimal(amount),
                    academic_year=academic_year,
                    effective_from=date(2023, 4, 1),
                )
                db.add(structure)
                db.flush()
            db.add(
                StudentFeeAssignment(
                    student_id=student.id,
                    fee_heading_id=heading.id,
                    fee_structure_id=structure.id,
                    amount=Decimal(amount),
                    academic_year=academic_year,
                    assigned_date=date(2023, 4, 1),
                )
            )
        db.commit()

    return _give


@pytest.fixture
def client(session_factory):
    app = FastAPI()
    app.include_router(router)

    def _override():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db_session] = _override
    return TestClient(app)


@pytest.fixture
def auth_header():
    def _header(role="center", center_id=CENTER_ID, subject="staff-1", student_ids=None):
        token = create_access_token(subject, role, center_id=center_id, student_ids=student_ids)
        return {"Authorization": f"Bearer {token}"}

    return _header
