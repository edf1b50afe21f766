"""Shared pytest fixtures.

The API runs against an in-memory SQLite database that lives for one test;
``get_db`` is overridden so every request shares the fixture's session.
Google is never contacted: tests monkeypatch the fetch helpers in ``main``.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import Base
from main import app, get_db
from models import Course, CourseEnrollment, PogilActivity, User

SHEET_URL = "https://docs.google.com/spreadsheets/d/abc-123_XYZ/edit#gid=0"


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def seed(db_session):
    """One instructor, six enrolled students, one outsider, a course and an activity."""
    instructor = User(email="prof@school.edu", name="Prof Ada", role="instructor")
    students = [
        User(email=f"student{i}@school.edu", name=f"Student {i}", role="student")
        for i in range(1, 7)
    ]
    outsider = User(email="outsider@school.edu", name="Out Sider", role="student")
    db_session.add_all([instructor, outsider, *students])
    db_session.flush()

    course = Course(name="Intro to Programming", code="CS101", instructor_id=instructor.id)
    db_session.add(course)
    db_session.flush()

    for student in students:
        db_session.add(CourseEnrollment(course_id=course.id, student_id=student.id))

    activity = PogilActivity(name="loops", title="Loops and Iteration", sheet_url=SHEET_URL)
    db_session.add(activity)
    db_session.commit()

    return {
        "instructor": instructor,
        "students": students,
        "outsider": outsider,
        "course": course,
        "activity": activity,
    }
