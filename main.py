import os
import logging
from contextlib import asynccontextmanager
from datetime import date as date_type
from typing import Annotated, List, Optional, Dict, Any

from bson import ObjectId
from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, EmailStr, StringConstraints
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import analytics
from database import (
    ATTENDANCE, REPORTS, STUDENTS, USERS,
    create_document, ensure_indexes, get_database, get_db, get_documents,
    parse_object_id, serialize, to_datetime,
)
from errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError, add_error_handlers
from middleware import TimingMiddleware
from schemas import (
    AttendanceLog, AttendanceRecord, AttendanceStatus, PresencePoint, PresenceRanking,
    Report, ReportCategory, ReportStatus, Student, SummaryCards, User,
)
from security import (
    CurrentUser, create_access_token, get_current_user, hash_password, public_user, verify_password,
)
from settings import get_settings, warn_insecure_defaults

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logging.getLogger("pymongo").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)
warn_insecure_defaults(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes(get_database())
    yield


app = FastAPI(title=settings.APP_TITLE, version=settings.APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TimingMiddleware)
add_error_handlers(app)

# ----------------------------- Models -----------------------------
Text = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterIn(RequestModel):
    name: Text
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginIn(RequestModel):
    email: EmailStr
    password: str


class StudentIn(RequestModel):
    student_id: Text = Field(..., alias="studentId")
    name: Text


class StudentUpdate(RequestModel):
    student_id: Optional[Text] = Field(None, alias="studentId")
    name: Optional[Text] = None


class AttendanceRecordIn(RequestModel):
    student: Text
    status: AttendanceStatus


class AttendanceIn(RequestModel):
    date: date_type
    records: List[AttendanceRecordIn] = Field(..., min_length=1)
    class_name: Optional[str] = Field(None, alias="className")
    subject: Optional[str] = None


class AttendanceUpdate(RequestModel):
    date: Optional[date_type] = None
    records: Optional[List[AttendanceRecordIn]] = Field(None, min_length=1)
    class_name: Optional[str] = Field(None, alias="className")
    subject: Optional[str] = None


class ReportIn(RequestModel):
    title: Text
    description: Text
    category: ReportCategory = "other"


class ReportUpdate(RequestModel):
    title: Optional[Text] = None
    description: Optional[Text] = None
    category: Optional[ReportCategory] = None
    status: Optional[ReportStatus] = None


# ----------------------------- Helpers -----------------------------

def find_by_id(db: Database, collection: str, raw_id: str, label: str) -> Dict[str, Any]:
    # a malformed id is reported the same way as a missing one
    oid = parse_object_id(raw_id)
    doc = db[collection].find_one({"_id": oid}) if oid else None
    if not doc:
        raise NotFoundError(f"{label} not found")
    return doc


def get_owned_log(db: Database, log_id: str, user: CurrentUser) -> Dict[str, Any]:
    log = find_by_id(db, ATTENDANCE, log_id, "Attendance log")
    if log["takenBy"] != user.oid:
        raise AuthorizationError("User not authorized to access this log")
    return log


def resolve_records(db: Database, records: List[AttendanceRecordIn]) -> List[AttendanceRecord]:
    """Validate every student reference before anything is written."""
    ids = [parse_object_id(r.student) for r in records]
    known = {s["_id"] for s in db[STUDENTS].find({"_id": {"$in": [i for i in ids if i]}}, {"_id": 1})}
    errors = [
        {"field": f"records.{n}.student", "message": f"Student with ID {r.student} not found."}
        for n, (r, oid) in enumerate(zip(records, ids))
        if oid not in known
    ]
    if errors:
        raise ValidationError("Unknown student in records", fields=errors)
    return [AttendanceRecord(student=oid, status=r.status) for r, oid in zip(records, ids)]


def populate_logs(db: Database, logs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Replace record student ids with {id, studentId, name}; deleted students become None."""
    ids = {r["student"] for log in logs for r in log.get("records", [])}
    students = {
        s["_id"]: {"id": str(s["_id"]), "studentId": s.get("studentId"), "name": s.get("name")}
        for s in db[STUDENTS].find({"_id": {"$in": list(ids)}})
    }
    out = []
    for log in logs:
        doc = serialize(log)
        doc["records"] = [
            {"student": students.get(r["student"]), "status": r["status"]}
            for r in log.get("records", [])
        ]
        out.append(doc)
    return out


def ensure_unique_student_id(db: Database, student_id: str, exclude: Optional[ObjectId] = None):
    query: Dict[str, Any] = {"studentId": student_id}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    if db[STUDENTS].find_one(query):
        raise ValidationError(
            "Student with this ID already exists",
            fields=[{"field": "studentId", "message": "Student with this ID already exists"}],
        )


def auth_response(user: Dict[str, Any]) -> Dict[str, Any]:
    return {"token": create_access_token(str(user["_id"])), "user": public_user(user).model_dump()}


# ----------------------------- Basic -----------------------------
@app.get("/")
def root():
    return {"status": "ok", "service": "attendance-dashboard"}


@app.get("/test")
def test_database(db: Database = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    response = {"backend": "running", "database": "connected"}
    try:
        db.list_collection_names()
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = "unavailable"
    return response


# ----------------------------- Auth -----------------------------
@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterIn, db: Database = Depends(get_db)):
    email = payload.email.lower()
    if db[USERS].find_one({"email": email}):
        raise ValidationError("Email already registered",
                              fields=[{"field": "email", "message": "Email already registered"}])
    role = "admin" if email in {e.lower() for e in settings.ADMIN_EMAILS} else "teacher"
    user = User(name=payload.name, email=email, password_hash=hash_password(payload.password), role=role)
    try:
        new_id = create_document(db, USERS, user.to_document())
    except DuplicateKeyError:
        raise ValidationError("Email already registered",
                              fields=[{"field": "email", "message": "Email already registered"}])
    logger.info("Registered %s user %s", role, new_id)
    return auth_response(db[USERS].find_one({"_id": new_id}))


@app.post("/api/auth/login")
def login(payload: LoginIn, db: Database = Depends(get_db)):
    user = db[USERS].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("passwordHash")):
        raise AuthenticationError("Invalid credentials")
    return auth_response(user)


@app.get("/api/auth/me")
def me(user: CurrentUser = Depends(get_current_user)):
    return user.model_dump()


# ----------------------------- Students -----------------------------
@app.post("/api/students", status_code=201)
def add_student(payload: StudentIn, db: Database = Depends(get_db),
                user: CurrentUser = Depends(get_current_user)):
    ensure_unique_student_id(db, payload.student_id)
    student = Student(student_id=payload.student_id, name=payload.name)
    try:
        new_id = create_document(db, STUDENTS, student.to_document())
    except DuplicateKeyError:
        ensure_unique_student_id(db, payload.student_id)
        raise
    return serialize(db[STUDENTS].find_one({"_id": new_id}))


@app.get("/api/students")
def list_students(db: Database = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return serialize(get_documents(db, STUDENTS, sort=[("name", 1)]))


@app.get("/api/students/{student_id}")
def get_student(student_id: str, db: Database = Depends(get_db),
                user: CurrentUser = Depends(get_current_user)):
    student = find_by_id(db, STUDENTS, student_id, "Student")
    sessions = get_documents(db, ATTENDANCE, {"records.student": student["_id"]})
    counts = {"present": 0, "absent": 0, "onleave": 0}
    for session in sessions:
        record = next((r for r in session["records"] if r["student"] == student["_id"]), None)
        if record and record["status"] in counts:
            counts[record["status"]] += 1
    return {
        "student": serialize(student),
        "attendanceSummary": {
            "totalEvents": len(sessions),
            "present": counts["present"],
            "absent": counts["absent"],
            "onLeave": counts["onleave"],
        },
    }


@app.put("/api/students/{student_id}")
def update_student(student_id: str, payload: StudentUpdate, db: Database = Depends(get_db),
                   user: CurrentUser = Depends(get_current_user)):
    student = find_by_id(db, STUDENTS, student_id, "Student")
    update = payload.model_dump(by_alias=True, exclude_none=True)
    if not update:
        return serialize(student)
    if "studentId" in update and update["studentId"] != student["studentId"]:
        ensure_unique_student_id(db, update["studentId"], exclude=student["_id"])
    updated = db[STUDENTS].find_one_and_update(
        {"_id": student["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise NotFoundError("Student not found")
    return serialize(updated)


@app.delete("/api/students/{student_id}")
def delete_student(student_id: str, db: Database = Depends(get_db),
                   user: CurrentUser = Depends(get_current_user)):
    student = find_by_id(db, STUDENTS, student_id, "Student")
    # attendance records keep their reference; analytics skips unresolved students
    db[STUDENTS].delete_one({"_id": student["_id"]})
    logger.info("Student %s removed by %s", student["studentId"], user.id)
    return {"msg": "Student removed"}


# ----------------------------- Attendance -----------------------------
@app.post("/api/attendance", status_code=201)
def create_attendance(payload: AttendanceIn, db: Database = Depends(get_db),
                      user: CurrentUser = Depends(get_current_user)):
    log = AttendanceLog(
        date=to_datetime(payload.date),
        taken_by=user.oid,
        class_name=payload.class_name,
        subject=payload.subject,
        records=resolve_records(db, payload.records),
    )
    new_id = create_document(db, ATTENDANCE, log.to_document())
    logger.info("Attendance log %s created by %s with %d records", new_id, user.id, len(payload.records))
    return serialize(db[ATTENDANCE].find_one({"_id": new_id}))


@app.get("/api/attendance")
def list_attendance(db: Database = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    logs = get_documents(db, ATTENDANCE, {"takenBy": user.oid}, sort=[("date", -1)])
    return populate_logs(db, logs)


@app.get("/api/attendance/{log_id}")
def get_attendance(log_id: str, db: Database = Depends(get_db),
                   user: CurrentUser = Depends(get_current_user)):
    return populate_logs(db, [get_owned_log(db, log_id, user)])[0]


@app.put("/api/attendance/{log_id}")
def update_attendance(log_id: str, payload: AttendanceUpdate, db: Database = Depends(get_db),
                      user: CurrentUser = Depends(get_current_user)):
    log = get_owned_log(db, log_id, user)
    update: Dict[str, Any] = {}
    if payload.date is not None:
        update["date"] = to_datetime(payload.date)
    if payload.records is not None:
        update["records"] = [r.to_document() for r in resolve_records(db, payload.records)]
    # empty strings are stored so the optional fields can be cleared
    if payload.class_name is not None:
        update["className"] = payload.class_name
    if payload.subject is not None:
        update["subject"] = payload.subject
    if update:
        db[ATTENDANCE].update_one({"_id": log["_id"]}, {"$set": update})
    return populate_logs(db, [db[ATTENDANCE].find_one({"_id": log["_id"]})])[0]


@app.delete("/api/attendance/{log_id}")
def delete_attendance(log_id: str, db: Database = Depends(get_db),
                      user: CurrentUser = Depends(get_current_user)):
    log = get_owned_log(db, log_id, user)
    db[ATTENDANCE].delete_one({"_id": log["_id"]})
    return {"msg": "Attendance log removed"}


# ----------------------------- Reports -----------------------------
@app.post("/api/reports", status_code=201)
def create_report(payload: ReportIn, db: Database = Depends(get_db),
                  user: CurrentUser = Depends(get_current_user)):
    report = Report(reported_by=user.oid, title=payload.title,
                    description=payload.description, category=payload.category)
    new_id = create_document(db, REPORTS, report.to_document())
    return serialize(db[REPORTS].find_one({"_id": new_id}))


@app.get("/api/reports")
def list_reports(db: Database = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return serialize(get_documents(db, REPORTS, {"reportedBy": user.oid}, sort=[("createdAt", -1)]))


@app.get("/api/reports/{report_id}")
def get_report(report_id: str, db: Database = Depends(get_db),
               user: CurrentUser = Depends(get_current_user)):
    report = find_by_id(db, REPORTS, report_id, "Report")
    if report["reportedBy"] != user.oid and not user.is_admin:
        raise AuthorizationError("Not authorized to view this report")
    return serialize(report)


@app.put("/api/reports/{report_id}")
def update_report(report_id: str, payload: ReportUpdate, db: Database = Depends(get_db),
                  user: CurrentUser = Depends(get_current_user)):
    report = find_by_id(db, REPORTS, report_id, "Report")
    if report["reportedBy"] != user.oid and not user.is_admin:
        raise AuthorizationError("Not authorized to update this report")
    update = payload.model_dump(exclude_none=True)
    if "status" in update and not user.is_admin:
        raise AuthorizationError("Only a reviewer can change the report status")
    if not update:
        return serialize(report)
    updated = db[REPORTS].find_one_and_update(
        {"_id": report["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    return serialize(updated)


# ----------------------------- Analytics -----------------------------
@app.get("/api/analytics/summary-cards", response_model=SummaryCards)
def summary_cards(db: Database = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return analytics.summary_cards(db, user.oid)


@app.get("/api/analytics/attendance-over-time", response_model=List[PresencePoint])
def attendance_over_time(db: Database = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return analytics.attendance_over_time(db, user.oid)


@app.get("/api/analytics/student-presence-ranking", response_model=PresenceRanking)
def student_presence_ranking(db: Database = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return analytics.student_presence_ranking(db, user.oid, limit=settings.RANKING_LIMIT)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
