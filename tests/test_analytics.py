from __future__ import annotations

from datetime import datetime

from bson import ObjectId

from analytics import (
    StudentStat,
    attendance_over_time,
    build_student_stats_pipeline,
    presence_series,
    rank_students,
    student_presence_ranking,
    student_stats,
    summary_cards,
)
from database import ATTENDANCE, STUDENTS


def _log(day, *statuses, owner=None):
    return {
        "date": datetime.fromisoformat(day),
        "takenBy": owner or ObjectId(),
        "records": [{"student": ObjectId(), "status": s} for s in statuses],
    }


# -- presence over time ------------------------------------------------------

def test_presence_series_one_point_per_log():
    logs = [
        _log("2024-01-01", "present", "absent"),
        _log("2024-01-01", "present", "present", "onleave"),
        _log("2024-01-02", "present", "present"),
        _log("2024-01-03", "present", *["absent"] * 31),
        _log("2024-01-04", *["present"] * 5, *["absent"] * 27),
    ]

    points = presence_series(logs)

    assert [p.date for p in points] == ["2024-01-01", "2024-01-01", "2024-01-02", "2024-01-03", "2024-01-04"]
    assert [p.percentagePresent for p in points] == [50.0, 66.67, 100.0, 3.13, 15.63]


def test_presence_series_empty_log_is_zero():
    points = presence_series([_log("2024-03-05")])

    assert points[0].percentagePresent == 0


def test_presence_series_no_logs():
    assert presence_series([]) == []


# -- ranking policy ----------------------------------------------------------

def test_zero_total_records_gives_zero_percentages():
    stat = StudentStat(student_id="S0", name="Ghost")

    entry = stat.to_entry()

    assert entry.presencePercentage == 0
    assert entry.absencePercentage == 0


def test_equal_rate_ranks_higher_count_first():
    few = StudentStat("S1", "Few", present_count=1, total_records=1)
    many = StudentStat("S2", "Many", present_count=4, total_records=4)

    ranking = rank_students([few, many])

    assert [e.studentId for e in ranking.mostPresent] == ["S2", "S1"]


def test_rate_beats_volume():
    perfect = StudentStat("S1", "Perfect", present_count=2, total_records=2)
    busy = StudentStat("S2", "Busy", present_count=9, absent_count=1, total_records=10)

    ranking = rank_students([busy, perfect])

    assert [e.studentId for e in ranking.mostPresent] == ["S1", "S2"]
    assert [e.studentId for e in ranking.mostAbsent] == ["S2", "S1"]


def test_absence_tie_break_on_absent_count():
    a = StudentStat("A", "A", absent_count=1, present_count=1, total_records=2)
    b = StudentStat("B", "B", absent_count=3, present_count=3, total_records=6)

    ranking = rank_students([a, b])

    assert [e.studentId for e in ranking.mostAbsent] == ["B", "A"]


def test_full_tie_is_ordered_by_student_id():
    stats = [StudentStat(sid, sid, present_count=1, total_records=1) for sid in ("S3", "S1", "S2")]

    assert [e.studentId for e in rank_students(stats).mostPresent] == ["S1", "S2", "S3"]
    assert [e.studentId for e in rank_students(reversed(stats)).mostPresent] == ["S1", "S2", "S3"]


def test_rankings_are_capped():
    stats = [StudentStat(f"S{i}", f"N{i}", present_count=i, absent_count=10 - i, total_records=10)
             for i in range(8)]

    ranking = rank_students(stats, limit=5)

    assert len(ranking.mostPresent) == 5
    assert len(ranking.mostAbsent) == 5
    assert ranking.mostPresent[0].studentId == "S7"
    assert ranking.mostAbsent[0].studentId == "S0"


def test_percentages_stay_in_bounds():
    stats = [
        StudentStat("S1", "A", present_count=3, total_records=3),
        StudentStat("S2", "B", absent_count=2, total_records=2),
        StudentStat("S3", "C", on_leave_count=1, total_records=1),
    ]

    ranking = rank_students(stats)

    for entry in ranking.mostPresent + ranking.mostAbsent:
        assert 0 <= entry.presencePercentage <= 1
        assert 0 <= entry.absencePercentage <= 1


def test_pipeline_matches_owner_first():
    owner = ObjectId()

    pipeline = build_student_stats_pipeline(owner)

    assert pipeline[0] == {"$match": {"takenBy": owner}}


# -- against the store -------------------------------------------------------

def _seed_scenario(db, owner):
    s1 = db[STUDENTS].insert_one({"studentId": "S1", "name": "Ann"}).inserted_id
    s2 = db[STUDENTS].insert_one({"studentId": "S2", "name": "Ben"}).inserted_id
    db[ATTENDANCE].insert_many([
        {"date": datetime(2024, 1, 2), "takenBy": owner,
         "records": [{"student": s1, "status": "present"}, {"student": s2, "status": "present"}]},
        {"date": datetime(2024, 1, 1), "takenBy": owner,
         "records": [{"student": s1, "status": "present"}, {"student": s2, "status": "absent"}]},
    ])
    return s1, s2


def test_two_log_scenario(db):
    owner = ObjectId()
    _seed_scenario(db, owner)

    series = attendance_over_time(db, owner)
    ranking = student_presence_ranking(db, owner)

    assert [p.model_dump() for p in series] == [
        {"date": "2024-01-01", "percentagePresent": 50.0},
        {"date": "2024-01-02", "percentagePresent": 100.0},
    ]
    assert [e.studentId for e in ranking.mostPresent] == ["S1", "S2"]
    assert [e.studentId for e in ranking.mostAbsent] == ["S2", "S1"]
    s1 = ranking.mostPresent[0]
    assert (s1.presentCount, s1.absentCount, s1.totalRecords, s1.presencePercentage) == (2, 0, 2, 1.0)
    s2 = ranking.mostPresent[1]
    assert (s2.presentCount, s2.absentCount, s2.totalRecords, s2.presencePercentage) == (1, 1, 2, 0.5)


def test_other_owners_logs_are_ignored(db):
    owner, stranger = ObjectId(), ObjectId()
    s1, _ = _seed_scenario(db, owner)
    db[ATTENDANCE].insert_one({"date": datetime(2024, 1, 3), "takenBy": stranger,
                               "records": [{"student": s1, "status": "absent"}]})

    ranking = student_presence_ranking(db, owner)

    assert ranking.mostPresent[0].totalRecords == 2
    assert len(attendance_over_time(db, owner)) == 2
    assert [e.absentCount for e in student_presence_ranking(db, stranger).mostAbsent] == [1]


def test_deleted_student_is_dropped(db):
    owner = ObjectId()
    s1, s2 = _seed_scenario(db, owner)
    db[STUDENTS].delete_one({"_id": s2})

    ranking = student_presence_ranking(db, owner)

    assert [e.studentId for e in ranking.mostPresent] == ["S1"]
    assert [e.studentId for e in ranking.mostAbsent] == ["S1"]


def test_total_records_counts_unknown_status(db):
    owner = ObjectId()
    s1 = db[STUDENTS].insert_one({"studentId": "S1", "name": "Ann"}).inserted_id
    db[ATTENDANCE].insert_many([
        {"date": datetime(2024, 1, 1), "takenBy": owner, "records": [{"student": s1, "status": "present"}]},
        {"date": datetime(2024, 1, 2), "takenBy": owner, "records": [{"student": s1, "status": "excused"}]},
    ])

    [stat] = student_stats(db, owner)

    assert stat.total_records == 2
    assert (stat.present_count, stat.absent_count, stat.on_leave_count) == (1, 0, 0)
    assert stat.presence_percentage == 0.5


def test_ranking_is_repeatable(db):
    owner = ObjectId()
    _seed_scenario(db, owner)

    assert student_presence_ranking(db, owner) == student_presence_ranking(db, owner)


def test_empty_history(db):
    owner = ObjectId()

    assert attendance_over_time(db, owner) == []
    ranking = student_presence_ranking(db, owner)
    assert ranking.mostPresent == [] and ranking.mostAbsent == []


def test_summary_cards(db):
    owner = ObjectId()
    _seed_scenario(db, owner)
    db[STUDENTS].insert_one({"studentId": "S3", "name": "Cid"})

    cards = summary_cards(db, owner)

    assert cards.totalStudents == 3
    assert cards.totalAttendanceTaken == 2
