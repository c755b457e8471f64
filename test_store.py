from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from conftest import make_principal, make_patient, make_exercise
from errors import SlotConflictError, TransientStoreError, ValidationError
from models import db, ExercisePlan, Patient, ScheduledExercise
from scheduling import SchedulingService, assemble_scheduled_exercises

JUNE_1 = date(2024, 6, 1)


@pytest.fixture
def seeded(sql_store):
    coach = make_principal(sql_store, "coach@physio.com")
    patient = make_patient(sql_store, coach)
    exercise = make_exercise(sql_store, coach)
    default = make_exercise(sql_store, None, name="Balance Training", category="balance")
    return coach, patient, exercise, default


def test_plan_is_created_once(sql_store, seeded):
    coach, patient, exercise, default = seeded
    service = SchedulingService(sql_store)
    service.assign_exercise(coach, patient.id, exercise.id, "2024-06-01", "08:00 - 09:00")
    service.assign_exercise(coach, patient.id, default.id, "2024-06-02", "13:00 - 14:00")
    assert ExercisePlan.query.filter_by(patient_id=patient.id).count() == 1
    assert ScheduledExercise.query.count() == 2


def test_plan_creation_race_reuses_winner(sql_store, seeded, monkeypatch):
    coach, patient, _, _ = seeded
    winner = sql_store.find_or_create_plan(patient.id, coach.id, "First")

    real_find = sql_store.find_plan
    calls = []

    def stale_find(patient_id):
        calls.append(patient_id)
        # The first lookup misses the plan another request just created
        return None if len(calls) == 1 else real_find(patient_id)

    monkeypatch.setattr(sql_store, "find_plan", stale_find)
    plan = sql_store.find_or_create_plan(patient.id, coach.id, "Second")
    assert plan.id == winner.id
    assert ExercisePlan.query.count() == 1


def test_database_rejects_duplicate_slot(sql_store, seeded):
    coach, patient, exercise, default = seeded
    plan = sql_store.find_or_create_plan(patient.id, coach.id, "Plan")
    sql_store.insert_scheduled_exercise(plan.id, exercise.id, JUNE_1, "08:00 - 09:00")
    with pytest.raises(SlotConflictError) as info:
        sql_store.insert_scheduled_exercise(plan.id, default.id, JUNE_1, "08:00 - 09:00")
    assert info.value.time_slot == "08:00 - 09:00"
    assert ScheduledExercise.query.count() == 1


def test_batch_insert_is_atomic(sql_store, seeded):
    coach, patient, exercise, default = seeded
    plan = sql_store.find_or_create_plan(patient.id, coach.id, "Plan")
    sql_store.insert_scheduled_exercise(plan.id, exercise.id, JUNE_1, "10:00 - 11:00")
    entries = [
        {"exercise_id": exercise.id, "scheduled_date": JUNE_1, "time_slot": "08:00 - 09:00"},
        {"exercise_id": default.id, "scheduled_date": JUNE_1, "time_slot": "10:00 - 11:00"},
    ]
    with pytest.raises(SlotConflictError) as info:
        sql_store.insert_scheduled_exercises(plan.id, entries)
    assert info.value.time_slot == "10:00 - 11:00"
    assert ScheduledExercise.query.count() == 1


def test_rows_are_joined_and_filtered(sql_store, seeded):
    coach, patient, exercise, default = seeded
    plan = sql_store.find_or_create_plan(patient.id, coach.id, "Plan")
    sql_store.insert_scheduled_exercise(plan.id, exercise.id, date(2024, 6, 3), "08:00 - 09:00", "Slow reps")
    sql_store.insert_scheduled_exercise(plan.id, default.id, JUNE_1, "09:00 - 10:00")

    rows = sql_store.list_scheduled_exercises(coach_id=coach.id)
    assert [r["scheduled_date"] for r in rows] == [JUNE_1, date(2024, 6, 3)]
    assert rows[0]["patient_name"] == "Emma Wilson"
    assert rows[1]["exercise"].name == "Knee Stabilization"
    assert rows[1]["notes"] == "Slow reps"

    assert len(sql_store.list_scheduled_exercises(patient_id=patient.id, start=JUNE_1, end=JUNE_1)) == 1
    assert sql_store.list_scheduled_exercises(coach_id=coach.id + 100) == []


def test_orphaned_row_is_skipped(sql_store, seeded):
    coach, patient, exercise, default = seeded
    plan = sql_store.find_or_create_plan(patient.id, coach.id, "Plan")
    sql_store.insert_scheduled_exercise(plan.id, exercise.id, JUNE_1, "08:00 - 09:00")
    sql_store.insert_scheduled_exercise(plan.id, default.id, JUNE_1, "09:00 - 10:00")
    sql_store.delete_exercise(exercise.id)

    rows = sql_store.list_scheduled_exercises(patient_id=patient.id)
    assert len(rows) == 2
    views = assemble_scheduled_exercises(rows)
    assert [v["exercise_id"] for v in views] == [default.id]


def test_delete_patient_removes_plan(sql_store, seeded):
    coach, patient, exercise, _ = seeded
    plan = sql_store.find_or_create_plan(patient.id, coach.id, "Plan")
    sql_store.insert_scheduled_exercise(plan.id, exercise.id, JUNE_1, "08:00 - 09:00")
    assert sql_store.delete_patient(patient.id) is True
    assert ExercisePlan.query.count() == 0
    assert ScheduledExercise.query.count() == 0
    assert sql_store.delete_patient(patient.id) is False


def test_progress_upsert(sql_store, seeded):
    coach, patient, exercise, _ = seeded
    first = sql_store.save_progress(patient.id, exercise.id, JUNE_1, exercise_name=exercise.name, actual_sets=2)
    second = sql_store.save_progress(patient.id, exercise.id, JUNE_1, exercise_name=exercise.name, actual_sets=3)
    assert first.id == second.id
    rows = sql_store.list_progress(patient.id)
    assert len(rows) == 1
    assert rows[0].actual_sets == 3


def test_connection_failure_is_transient(sql_store, seeded, monkeypatch):
    coach, patient, _, _ = seeded

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db.session, "commit", broken_commit)
    with pytest.raises(TransientStoreError):
        sql_store.update_patient(patient.id, notes="unreachable")


def test_non_slot_integrity_error_is_not_reported_as_conflict(sql_store, seeded):
    coach, patient, exercise, _ = seeded
    plan = sql_store.find_or_create_plan(patient.id, coach.id, "Plan")
    entries = [{"exercise_id": None, "scheduled_date": JUNE_1, "time_slot": "08:00 - 09:00"}]
    with pytest.raises(IntegrityError):
        sql_store.insert_scheduled_exercises(plan.id, entries)
    assert ScheduledExercise.query.count() == 0
    sql_store.insert_scheduled_exercise(plan.id, exercise.id, JUNE_1, "08:00 - 09:00")


def test_duplicate_slot_within_batch_is_a_conflict(sql_store, seeded):
    coach, patient, exercise, default = seeded
    plan = sql_store.find_or_create_plan(patient.id, coach.id, "Plan")
    entries = [
        {"exercise_id": exercise.id, "scheduled_date": JUNE_1, "time_slot": "08:00 - 09:00"},
        {"exercise_id": default.id, "scheduled_date": JUNE_1, "time_slot": "08:00 - 09:00"},
    ]
    with pytest.raises(SlotConflictError):
        sql_store.insert_scheduled_exercises(plan.id, entries)
    assert ScheduledExercise.query.count() == 0


def test_database_refuses_second_link_to_client(sql_store, seeded):
    coach, patient, _, _ = seeded
    client = make_principal(sql_store, "john@client.com", role="client")
    sql_store.update_patient(patient.id, user_id=client.id)
    with pytest.raises(ValidationError):
        make_patient(sql_store, coach, name="John", surname="Smith", user_id=client.id)
    assert sql_store.get_patient_for_user(client.id).id == patient.id
    assert Patient.query.count() == 1


def test_coaching_request_pair_is_unique(sql_store, seeded):
    coach, _, _, _ = seeded
    client = make_principal(sql_store, "john@client.com", role="client")
    request = sql_store.insert_coaching_request(coach.id, client.id)
    assert request.status == "pending"
    with pytest.raises(ValidationError):
        sql_store.insert_coaching_request(coach.id, client.id)
    assert [r.id for r in sql_store.list_coaching_requests(client_id=client.id)] == [request.id]

    sql_store.update_coaching_request(request.id, status="accepted")
    assert sql_store.get_coaching_request(request.id).status == "accepted"
    assert [u.id for u in sql_store.list_users(role="client")] == [client.id]
