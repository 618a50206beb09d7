"""
Database Schemas for the Attendance Dashboard

Each Pydantic model corresponds to a MongoDB collection (lowercased class name).
Documents are stored with camelCase keys, the same shape the API returns;
Python code uses the snake_case attribute names.
"""
from __future__ import annotations
from typing import Optional, List, Literal
from pydantic import BaseModel, ConfigDict, Field, EmailStr
from datetime import datetime

from bson import ObjectId

AttendanceStatus = Literal["present", "absent", "onleave"]
ReportCategory = Literal["bug", "feature_request", "ui_issue", "other"]
ReportStatus = Literal["open", "in_progress", "resolved", "closed"]
Role = Literal["teacher", "admin"]


class Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# Users
class User(Document):
    name: str
    email: EmailStr
    password_hash: str = Field(alias="passwordHash")
    role: Role = "teacher"


# Global roster
class Student(Document):
    student_id: str = Field(alias="studentId", min_length=1)
    name: str = Field(min_length=1)


# Attendance
class AttendanceRecord(Document):
    student: ObjectId
    status: AttendanceStatus


class AttendanceLog(Document):
    date: datetime
    taken_by: ObjectId = Field(alias="takenBy")
    class_name: Optional[str] = Field(None, alias="className")
    subject: Optional[str] = None
    records: List[AttendanceRecord] = Field(min_length=1)


# Issue reports
class Report(Document):
    reported_by: ObjectId = Field(alias="reportedBy")
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    category: ReportCategory = "other"
    status: ReportStatus = "open"


# Analytics responses
class SummaryCards(BaseModel):
    totalStudents: int
    totalAttendanceTaken: int


class PresencePoint(BaseModel):
    date: str
    percentagePresent: float = Field(ge=0, le=100)


class StatEntry(BaseModel):
    studentId: str
    name: str
    presentCount: int
    absentCount: int
    onLeaveCount: int
    totalRecords: int
    presencePercentage: float = Field(ge=0, le=1)
    absencePercentage: float = Field(ge=0, le=1)


class PresenceRanking(BaseModel):
    mostPresent: List[StatEntry] = []
    mostAbsent: List[StatEntry] = []
