# models.py
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from db import Base

ROLES_USUARIO = ("student", "instructor", "root")


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String)
    role = Column(String, default="student", nullable=False)  # student | instructor | root


class Course(Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    code = Column(String)
    instructor_id = Column(Integer, ForeignKey("users.id"))

    instructor = relationship("User")
    enrollments = relationship("CourseEnrollment", back_populates="course", cascade="all, delete-orphan")


class CourseEnrollment(Base):
    __tablename__ = "course_enrollments"
    __table_args__ = (UniqueConstraint("course_id", "student_id"),)

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), index=True)
    student_id = Column(Integer, ForeignKey("users.id"), index=True)

    course = relationship("Course", back_populates="enrollments")
    student = relationship("User")


class PogilActivity(Base):
    __tablename__ = "pogil_activities"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    title = Column(String)
    sheet_url = Column(String)
    # NULL = actividad disponible para todos los cursos
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=True)


class ActivityInstance(Base):
    __tablename__ = "activity_instances"

    id = Column(Integer, primary_key=True, index=True)
    activity_id = Column(Integer, ForeignKey("pogil_activities.id"), index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), index=True)
    group_number = Column(Integer, nullable=True)  # NULL = instancia general
    created_at = Column(DateTime, default=utcnow)

    activity = relationship("PogilActivity")
    # Relación: una instancia tiene muchos grupos
    groups = relationship(
        "ActivityGroup",
        back_populates="instance",
        cascade="all, delete-orphan",
        order_by="ActivityGroup.group_number",
    )


class ActivityGroup(Base):
    __tablename__ = "activity_groups"
    __table_args__ = (UniqueConstraint("activity_instance_id", "group_number"),)

    id = Column(Integer, primary_key=True, index=True)
    activity_instance_id = Column(Integer, ForeignKey("activity_instances.id"), index=True)
    group_number = Column(Integer, nullable=False)

    instance = relationship("ActivityInstance", back_populates="groups")
    # Relación: un grupo tiene muchos miembros
    members = relationship(
        "GroupMember", back_populates="group", cascade="all, delete-orphan", order_by="GroupMember.id"
    )


class GroupMember(Base):
    __tablename__ = "group_members"

    id = Column(Integer, primary_key=True, index=True)
    activity_group_id = Column(Integer, ForeignKey("activity_groups.id"), index=True)
    student_id = Column(Integer, ForeignKey("users.id"), index=True)
    role = Column(String, nullable=True)  # facilitator | spokesperson | analyst | qc

    group = relationship("ActivityGroup", back_populates="members")
    student = relationship("User")


class ActivityHeartbeat(Base):
    __tablename__ = "activity_heartbeats"

    activity_instance_id = Column(Integer, ForeignKey("activity_instances.id"), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    updated_at = Column(DateTime, default=utcnow, nullable=False, index=True)
