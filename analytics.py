"""
Attendance analytics

Two read-only views are derived from the attendance logs a user has taken:

- presence over time: one point per log, the share of records marked
  present, as a percentage rounded to two decimals.
- presence ranking: per-student counts over every record of every log,
  ranked by presence and by absence (top N each).

Both views are scoped to the requesting owner before anything is
aggregated, and both are recomputed from the store on every call.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List

from bson import ObjectId
from pymongo.database import Database

from database import ATTENDANCE, STUDENTS
from schemas import PresencePoint, PresenceRanking, StatEntry, SummaryCards

logger = logging.getLogger(__name__)

PRESENT = "present"
ABSENT = "absent"
ON_LEAVE = "onleave"


def _ratio(part: int, whole: int) -> float:
    if not whole:
        return 0
    return part / whole


def _percent(part: int, whole: int) -> float:
    # ties round up on the exact double, two decimals
    value = Decimal(_ratio(part, whole) * 100)
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _status_count(status: str) -> Dict[str, Any]:
    return {"$sum": {"$cond": [{"$eq": ["$records.status", status]}, 1, 0]}}


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------

def build_student_stats_pipeline(owner_id: ObjectId) -> List[Dict]:
    """Flatten the owner's logs into per-student counts joined to the roster.

    Students that no longer exist are dropped by the final $unwind.
    """
    return [
        {"$match": {"takenBy": owner_id}},
        {"$unwind": "$records"},
        {"$group": {
            "_id": "$records.student",
            "presentCount": _status_count(PRESENT),
            "absentCount": _status_count(ABSENT),
            "onLeaveCount": _status_count(ON_LEAVE),
            "totalRecords": {"$sum": 1},
        }},
        {"$lookup": {
            "from": STUDENTS,
            "localField": "_id",
            "foreignField": "_id",
            "as": "studentInfo",
        }},
        {"$unwind": "$studentInfo"},
        {"$project": {
            "_id": 0,
            "studentId": "$studentInfo.studentId",
            "name": "$studentInfo.name",
            "presentCount": 1,
            "absentCount": 1,
            "onLeaveCount": 1,
            "totalRecords": 1,
        }},
    ]


# ---------------------------------------------------------------------------
# Presence over time
# ---------------------------------------------------------------------------

def presence_point(log: Dict[str, Any]) -> PresencePoint:
    records = log.get("records") or []
    present = sum(1 for r in records if r.get("status") == PRESENT)
    pct = _percent(present, len(records))
    return PresencePoint(date=log["date"].date().isoformat(), percentagePresent=pct)


def presence_series(logs: Iterable[Dict[str, Any]]) -> List[PresencePoint]:
    """One point per log, in the order given (callers sort by date)."""
    return [presence_point(log) for log in logs]


def attendance_over_time(db: Database, owner_id: ObjectId) -> List[PresencePoint]:
    logs = db[ATTENDANCE].find({"takenBy": owner_id}).sort("date", 1)
    return presence_series(logs)


# ---------------------------------------------------------------------------
# Presence ranking
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StudentStat:
    student_id: str
    name: str
    present_count: int = 0
    absent_count: int = 0
    on_leave_count: int = 0
    total_records: int = 0

    @property
    def presence_percentage(self) -> float:
        return _ratio(self.present_count, self.total_records)

    @property
    def absence_percentage(self) -> float:
        return _ratio(self.absent_count, self.total_records)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "StudentStat":
        return cls(
            student_id=str(row.get("studentId", "")),
            name=row.get("name", ""),
            present_count=int(row.get("presentCount", 0)),
            absent_count=int(row.get("absentCount", 0)),
            on_leave_count=int(row.get("onLeaveCount", 0)),
            total_records=int(row.get("totalRecords", 0)),
        )

    def to_entry(self) -> StatEntry:
        return StatEntry(
            studentId=self.student_id,
            name=self.name,
            presentCount=self.present_count,
            absentCount=self.absent_count,
            onLeaveCount=self.on_leave_count,
            totalRecords=self.total_records,
            presencePercentage=self.presence_percentage,
            absencePercentage=self.absence_percentage,
        )


def _by_presence(stat: StudentStat):
    return (-stat.presence_percentage, -stat.present_count, stat.student_id)


def _by_absence(stat: StudentStat):
    return (-stat.absence_percentage, -stat.absent_count, stat.student_id)


def rank_students(stats: Iterable[StudentStat], limit: int = 5) -> PresenceRanking:
    """Rank the same stats twice: by presence and by absence.

    The rate decides first; on equal rates the larger raw count wins, and
    studentId settles anything left so repeated calls give the same order.
    """
    stats = list(stats)
    most_present = sorted(stats, key=_by_presence)[:limit]
    most_absent = sorted(stats, key=_by_absence)[:limit]
    return PresenceRanking(
        mostPresent=[s.to_entry() for s in most_present],
        mostAbsent=[s.to_entry() for s in most_absent],
    )


def student_stats(db: Database, owner_id: ObjectId) -> List[StudentStat]:
    rows = db[ATTENDANCE].aggregate(build_student_stats_pipeline(owner_id))
    return [StudentStat.from_row(row) for row in rows]


def student_presence_ranking(db: Database, owner_id: ObjectId, limit: int = 5) -> PresenceRanking:
    stats = student_stats(db, owner_id)
    logger.debug("Ranking %d students for %s", len(stats), owner_id)
    return rank_students(stats, limit=limit)


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

def summary_cards(db: Database, owner_id: ObjectId) -> SummaryCards:
    return SummaryCards(
        totalStudents=db[STUDENTS].count_documents({}),
        totalAttendanceTaken=db[ATTENDANCE].count_documents({"takenBy": owner_id}),
    )
