# main.py
import logging
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import (
    CORS_ORIGINS,
    GROUP_SIZE,
    HEARTBEAT_WINDOW_SECONDS,
    LOG_LEVEL,
    MIN_GROUP_STUDENTS,
    ROTATION_SECONDS,
)
from db import Base, SessionLocal, engine
from google_docs import SourceFetchError, fetch_document_html, fetch_sheet_lines
from grouping import (
    ROLES,
    GroupSetupError,
    assign_roles,
    pick_active_student,
    shuffle_into_groups,
    validate_group_setup,
)
from logging_setup import setup_logging
from models import (
    ROLES_USUARIO,
    ActivityGroup,
    ActivityHeartbeat,
    ActivityInstance,
    Course,
    CourseEnrollment,
    GroupMember,
    PogilActivity,
    User,
    utcnow,
)
from renderer import render_blocks
from sheet_parser import parse_google_doc_html, parse_sheet_to_blocks

logger = logging.getLogger(__name__)

# Crear las tablas en la BD (si no existen)
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(LOG_LEVEL)
    logger.info("POGIL activity service ready")
    yield


app = FastAPI(title="POGIL Activity Service", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Modelos Pydantic para las solicitudes
class CreateInstanceRequest(BaseModel):
    activityName: str
    courseId: int
    userId: Optional[int] = None
    userEmail: Optional[str] = None


class RoleAssignment(BaseModel):
    facilitator: int
    spokesperson: int
    analyst: int
    qc: int


class CreateInstanceWithRolesRequest(BaseModel):
    activityName: str
    courseId: int
    roles: RoleAssignment


class SetupGroupsForActivityRequest(BaseModel):
    activityId: Optional[int] = None
    courseId: Optional[int] = None
    presentStudentIds: Optional[list[int]] = None


class MemberPayload(BaseModel):
    student_id: int
    role: Optional[str] = None


class GroupPayload(BaseModel):
    members: list[MemberPayload] = []


class SetupGroupsRequest(BaseModel):
    groups: list[GroupPayload] = []


class HeartbeatRequest(BaseModel):
    userId: Optional[int] = None


class RoleUpdateRequest(BaseModel):
    role: str


class ParseSheetRequest(BaseModel):
    lines: list[str]


# Modelos Pydantic para las respuestas
class InstanceCreatedResponse(BaseModel):
    instanceId: int


class SuccessResponse(BaseModel):
    success: bool = True


class ActivitySummary(BaseModel):
    activity_id: int
    activity_name: str
    title: Optional[str] = None
    sheet_url: Optional[str] = None
    instance_id: Optional[int] = None
    is_ready: bool


class InstanceResponse(BaseModel):
    id: int
    course_id: int
    activity_name: str


class GroupMemberResponse(BaseModel):
    student_id: int
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None


class GroupResponse(BaseModel):
    group_number: int
    members: list[GroupMemberResponse]


class StudentResponse(BaseModel):
    id: int
    name: Optional[str] = None
    email: str


class EnrolledStudentsResponse(BaseModel):
    students: list[StudentResponse]


class ActiveStudentResponse(BaseModel):
    activeStudentId: Optional[int] = None


class UserResponse(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    role: str


# Dependencia para obtener la sesión de BD
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def db_failure(db: Session, message: str) -> HTTPException:
    """Deshace la transacción, registra el error y devuelve el 500 genérico."""
    db.rollback()
    logger.exception(message)
    return HTTPException(status_code=500, detail=message)


def get_instance_or_404(db: Session, instance_id: int) -> ActivityInstance:
    instance = db.get(ActivityInstance, instance_id)
    if instance is None:
        raise HTTPException(status_code=404, detail="Activity instance not found")
    return instance


def get_sheet_url_or_404(db: Session, instance_id: int) -> str:
    row = (
        db.query(PogilActivity.sheet_url)
        .join(ActivityInstance, ActivityInstance.activity_id == PogilActivity.id)
        .filter(ActivityInstance.id == instance_id)
        .first()
    )
    if not row or not row.sheet_url:
        logger.warning("Missing or empty sheet_url for instance %s", instance_id)
        raise HTTPException(status_code=404, detail="No sheet_url found")
    return row.sheet_url


def find_general_instance(db: Session, activity_id: int, course_id: int) -> Optional[ActivityInstance]:
    return (
        db.query(ActivityInstance)
        .filter(
            ActivityInstance.activity_id == activity_id,
            ActivityInstance.course_id == course_id,
            ActivityInstance.group_number.is_(None),
        )
        .order_by(ActivityInstance.id.desc())
        .first()
    )


@app.get("/api/health")
def health_check():
    return {"status": "ok"}


# Endpoint para listar las actividades de un curso
@app.get("/api/courses/{course_id}/activities", response_model=list[ActivitySummary])
def get_course_activities(course_id: int, db: Session = Depends(get_db)):
    try:
        if db.get(Course, course_id) is None:
            raise HTTPException(status_code=404, detail="Course not found")

        activities = (
            db.query(PogilActivity)
            .filter(or_(PogilActivity.course_id == course_id, PogilActivity.course_id.is_(None)))
            .order_by(PogilActivity.id)
            .all()
        )
        result = []
        for activity in activities:
            instance = find_general_instance(db, activity.id, course_id)
            result.append(ActivitySummary(
                activity_id=activity.id,
                activity_name=activity.name,
                title=activity.title,
                sheet_url=activity.sheet_url,
                instance_id=instance.id if instance else None,
                is_ready=bool(instance and instance.groups),
            ))
        return result
    except SQLAlchemyError:
        raise db_failure(db, "Failed to fetch activities")


# Endpoint para iniciar (o reutilizar) la instancia general de una actividad
@app.post("/api/activity-instances", response_model=InstanceCreatedResponse)
def create_activity_instance(request: CreateInstanceRequest, db: Session = Depends(get_db)):
    try:
        # 1. Buscar la actividad por nombre
        activity = db.query(PogilActivity).filter(PogilActivity.name == request.activityName).first()
        if activity is None:
            raise HTTPException(status_code=404, detail="Activity not found")

        # 2. Buscar una instancia general existente
        instance = find_general_instance(db, activity.id, request.courseId)

        # 3. Si existe, comprobar los roles asignados
        if instance is not None:
            if not instance.groups:
                # Roles sin asignar: cualquier estudiante puede continuar
                return InstanceCreatedResponse(instanceId=instance.id)

            member_emails = {
                member.student.email
                for group in instance.groups
                for member in group.members
                if member.student is not None
            }
            course = db.get(Course, request.courseId)
            is_instructor = (
                course is not None
                and request.userId is not None
                and course.instructor_id == request.userId
            )
            if request.userEmail in member_emails or is_instructor:
                return InstanceCreatedResponse(instanceId=instance.id)
            raise HTTPException(status_code=403, detail="Not authorized to start this activity.")

        # 4. No existe instancia: crear una
        instance = ActivityInstance(activity_id=activity.id, course_id=request.courseId, group_number=None)
        db.add(instance)
        db.commit()
        db.refresh(instance)
        logger.info("Created instance %s for activity %s", instance.id, activity.name)
        return InstanceCreatedResponse(instanceId=instance.id)
    except SQLAlchemyError:
        raise db_failure(db, "Failed to create activity instance")


# Endpoint para crear una instancia con un único grupo y roles fijos
@app.post("/api/activity-instances/with-roles", response_model=InstanceCreatedResponse)
def create_activity_instance_with_roles(request: CreateInstanceWithRolesRequest, db: Session = Depends(get_db)):
    try:
        activity = db.query(PogilActivity).filter(PogilActivity.name == request.activityName).first()
        if activity is None:
            raise HTTPException(status_code=404, detail="Activity not found")

        instance = ActivityInstance(activity_id=activity.id, course_id=request.courseId)
        group = ActivityGroup(group_number=1)
        for role in ROLES:
            group.members.append(GroupMember(student_id=getattr(request.roles, role), role=role))
        instance.groups.append(group)

        db.add(instance)
        db.commit()
        db.refresh(instance)
        return InstanceCreatedResponse(instanceId=instance.id)
    except SQLAlchemyError:
        raise db_failure(db, "Failed to create activity instance")


# Endpoint para crear la instancia y repartir a los presentes en grupos de 4
@app.post("/api/activity-instances/setup-groups", response_model=InstanceCreatedResponse, status_code=201)
def setup_groups_for_activity(request: SetupGroupsForActivityRequest, db: Session = Depends(get_db)):
    if not request.activityId or not request.courseId or request.presentStudentIds is None:
        raise HTTPException(status_code=400, detail="Missing required fields")

    try:
        if db.get(PogilActivity, request.activityId) is None:
            raise HTTPException(status_code=404, detail="Activity not found")

        # 1. Crear la instancia principal
        instance = ActivityInstance(activity_id=request.activityId, course_id=request.courseId)

        # 2. Mezclar y repartir en grupos, asignando roles por posición
        groups_list = shuffle_into_groups(request.presentStudentIds, GROUP_SIZE)
        for group_number, group_students in enumerate(groups_list, start=1):
            group = ActivityGroup(group_number=group_number)
            for student_id, role in assign_roles(group_students):
                group.members.append(GroupMember(student_id=student_id, role=role))
            instance.groups.append(group)

        db.add(instance)
        db.commit()
        db.refresh(instance)
        logger.info("Instance %s: %d students in %d groups", instance.id,
                    len(request.presentStudentIds), len(groups_list))
        return InstanceCreatedResponse(instanceId=instance.id)
    except SQLAlchemyError:
        raise db_failure(db, "Group setup failed")


@app.get("/api/activity-instances/{instance_id}", response_model=InstanceResponse)
def get_activity_instance(instance_id: int, db: Session = Depends(get_db)):
    try:
        instance = get_instance_or_404(db, instance_id)
        return InstanceResponse(
            id=instance.id,
            course_id=instance.course_id,
            activity_name=instance.activity.name,
        )
    except SQLAlchemyError:
        raise db_failure(db, "Failed to fetch activity instance")


# Endpoint para la vista previa: líneas de la hoja y bloques parseados
@app.get("/api/activity-instances/{instance_id}/preview")
def get_parsed_sheet_for_instance(instance_id: int, db: Session = Depends(get_db)):
    try:
        sheet_url = get_sheet_url_or_404(db, instance_id)
    except SQLAlchemyError:
        raise db_failure(db, "Internal error")

    try:
        lines = fetch_sheet_lines(sheet_url)
    except SourceFetchError:
        logger.exception("Error fetching sheet preview")
        raise HTTPException(status_code=500, detail="Internal error")

    return {"lines": lines, "blocks": parse_sheet_to_blocks(lines)}


@app.get("/api/activity-instances/{instance_id}/render")
def render_instance(
    instance_id: int,
    mode: Literal["preview", "run"] = "preview",
    editable: bool = False,
    is_active: bool = Query(False, alias="isActive"),
    db: Session = Depends(get_db),
):
    try:
        sheet_url = get_sheet_url_or_404(db, instance_id)
    except SQLAlchemyError:
        raise db_failure(db, "Internal error")

    try:
        lines = fetch_sheet_lines(sheet_url)
    except SourceFetchError:
        logger.exception("Error rendering activity sheet")
        raise HTTPException(status_code=500, detail="Internal error")

    blocks = parse_sheet_to_blocks(lines)
    return {"html": render_blocks(blocks, mode=mode, editable=editable, is_active=is_active)}


# Endpoint para leer la actividad como Google Doc (API de Docs)
@app.get("/api/activity-instances/{instance_id}/doc")
def get_parsed_activity_doc(instance_id: int, db: Session = Depends(get_db)):
    try:
        sheet_url = get_sheet_url_or_404(db, instance_id)
    except SQLAlchemyError:
        raise db_failure(db, "Failed to load document")

    try:
        html = fetch_document_html(sheet_url)
    except SourceFetchError:
        logger.exception("Error parsing activity doc")
        raise HTTPException(status_code=500, detail="Failed to load document")

    return {"lines": parse_google_doc_html(html)}


# Endpoint para reemplazar los grupos de una instancia
@app.post("/api/activity-instances/{instance_id}/setup-groups", response_model=SuccessResponse)
def setup_groups_for_instance(instance_id: int, request: SetupGroupsRequest, db: Session = Depends(get_db)):
    # Validar antes de borrar nada
    try:
        validate_group_setup([group.model_dump() for group in request.groups], MIN_GROUP_STUDENTS)
    except GroupSetupError as e:
        raise HTTPException(status_code=400, detail=str(e))

    for group in request.groups:
        for member in group.members:
            if member.role is not None and member.role not in ROLES:
                raise HTTPException(status_code=400, detail=f"Unknown role: {member.role}")

    try:
        instance = get_instance_or_404(db, instance_id)

        # Eliminar los grupos existentes (y sus miembros) antes de insertar,
        # UNIQUE(activity_instance_id, group_number)
        instance.groups.clear()
        db.flush()

        for group_number, group in enumerate(request.groups, start=1):
            db_group = ActivityGroup(group_number=group_number)
            for member in group.members:
                db_group.members.append(GroupMember(student_id=member.student_id, role=member.role))
            instance.groups.append(db_group)

        db.commit()
        return SuccessResponse()
    except SQLAlchemyError:
        raise db_failure(db, "Failed to set up groups")


# Endpoint para ver los grupos de una instancia
@app.get("/api/activity-instances/{instance_id}/groups", response_model=list[GroupResponse])
def get_instance_groups(instance_id: int, db: Session = Depends(get_db)):
    try:
        instance = get_instance_or_404(db, instance_id)
        result = []
        for group in instance.groups:
            members = [
                GroupMemberResponse(
                    student_id=member.student_id,
                    name=member.student.name if member.student else None,
                    email=member.student.email if member.student else None,
                    role=member.role,
                )
                for member in group.members
            ]
            result.append(GroupResponse(group_number=group.group_number, members=members))
        return result
    except SQLAlchemyError:
        raise db_failure(db, "Failed to fetch groups")


@app.get("/api/activity-instances/{instance_id}/enrolled-students", response_model=EnrolledStudentsResponse)
def get_enrolled_students(instance_id: int, db: Session = Depends(get_db)):
    try:
        instance = get_instance_or_404(db, instance_id)
        students = (
            db.query(User)
            .join(CourseEnrollment, CourseEnrollment.student_id == User.id)
            .filter(CourseEnrollment.course_id == instance.course_id, User.role == "student")
            .order_by(User.name, User.id)
            .all()
        )
        return EnrolledStudentsResponse(
            students=[StudentResponse(id=s.id, name=s.name, email=s.email) for s in students]
        )
    except SQLAlchemyError:
        raise db_failure(db, "Failed to fetch students")


# Endpoint para registrar la presencia de un estudiante
@app.post("/api/activity-instances/{instance_id}/heartbeat", response_model=SuccessResponse)
def record_heartbeat(instance_id: int, request: HeartbeatRequest, db: Session = Depends(get_db)):
    if not request.userId:
        raise HTTPException(status_code=400, detail="Missing userId")

    try:
        get_instance_or_404(db, instance_id)
        # Inserta o actualiza (equivalente a REPLACE INTO)
        db.merge(ActivityHeartbeat(
            activity_instance_id=instance_id,
            user_id=request.userId,
            updated_at=utcnow(),
        ))
        db.commit()
        return SuccessResponse()
    except SQLAlchemyError:
        raise db_failure(db, "Failed to record presence")


# Endpoint para saber a qué estudiante le toca controlar la actividad
@app.get("/api/activity-instances/{instance_id}/active-student", response_model=ActiveStudentResponse)
def get_active_student(
    instance_id: int,
    group_number: Optional[int] = Query(None, alias="groupNumber"),
    db: Session = Depends(get_db),
):
    cutoff = utcnow() - timedelta(seconds=HEARTBEAT_WINDOW_SECONDS)
    try:
        query = (
            db.query(ActivityHeartbeat.user_id)
            .join(GroupMember, GroupMember.student_id == ActivityHeartbeat.user_id)
            .join(ActivityGroup, GroupMember.activity_group_id == ActivityGroup.id)
            .filter(
                ActivityHeartbeat.activity_instance_id == instance_id,
                ActivityGroup.activity_instance_id == instance_id,
                ActivityHeartbeat.updated_at >= cutoff,
            )
        )
        if group_number is not None:
            query = query.filter(ActivityGroup.group_number == group_number)
        rows = query.order_by(ActivityHeartbeat.user_id).all()
    except SQLAlchemyError:
        raise db_failure(db, "Failed to determine active student")

    student_ids = [row.user_id for row in rows]
    return ActiveStudentResponse(activeStudentId=pick_active_student(student_ids, time.time(), ROTATION_SECONDS))


# Endpoint para parsear líneas sin pasar por Google
@app.post("/api/sheets/parse")
def parse_sheet(request: ParseSheetRequest):
    return {"blocks": parse_sheet_to_blocks(request.lines)}


# Administración de usuarios
@app.get("/admin/users", response_model=list[UserResponse])
def get_users(db: Session = Depends(get_db)):
    try:
        users = db.query(User).order_by(User.id).all()
        return [UserResponse(id=u.id, email=u.email, name=u.name, role=u.role) for u in users]
    except SQLAlchemyError:
        raise db_failure(db, "DB query failed")


@app.put("/admin/users/{user_id}/role", response_model=SuccessResponse)
def update_user_role(user_id: int, request: RoleUpdateRequest, db: Session = Depends(get_db)):
    if request.role not in ROLES_USUARIO:
        raise HTTPException(status_code=400, detail=f"Invalid role: {request.role}")

    try:
        user = db.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        user.role = request.role
        db.commit()
        logger.info("User %s role set to %s", user_id, request.role)
        return SuccessResponse()
    except SQLAlchemyError:
        raise db_failure(db, "Failed to update role")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=3003, reload=True)
