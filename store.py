"""
Record store adapters.

The scheduling engine talks to persistence only through ``RecordStore``.
``SqlRecordStore`` is the production adapter on top of Flask-SQLAlchemy;
``MemoryRecordStore`` keeps everything in process for demo mode and fast
tests. Both return model instances for patients, exercises and plans, and
plain dict rows for scheduled exercises (the joined shape the assembler in
``scheduling`` consumes).
"""
import itertools
import logging
import threading
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, OperationalError

from errors import SlotConflictError, TransientStoreError, ValidationError
from models import (
    db, UserAccount, Patient, CoachingRequest, Exercise, ExercisePlan, ScheduledExercise,
    ExerciseProgress, utcnow,
)

LINKED_ACCOUNT_MESSAGE = "This client account is already linked to a patient"
DUPLICATE_REQUEST_MESSAGE = "You have already requested this coach"

logger = logging.getLogger(__name__)


def scheduled_row(entry, plan, patient, exercise):
    """Flatten one scheduled exercise and its joins into a row dict."""
    return {
        "id": entry.id,
        "plan_id": entry.plan_id,
        "exercise_id": entry.exercise_id,
        "scheduled_date": entry.scheduled_date,
        "time_slot": entry.time_slot,
        "notes": entry.notes,
        "completed": bool(entry.completed),
        "exercise": exercise,
        "patient_id": plan.patient_id,
        "coach_id": plan.coach_id,
        "patient_name": patient.full_name if patient else "",
    }


class RecordStore:
    """Persistence contract used by the scheduling engine."""

    # Users
    def get_user(self, user_id):
        raise NotImplementedError

    def find_user_by_email(self, email):
        raise NotImplementedError

    def insert_user(self, **fields):
        raise NotImplementedError

    def list_users(self, role=None):
        raise NotImplementedError

    # Coaching requests
    def insert_coaching_request(self, coach_id, client_id):
        """Create a pending request. Raises ValidationError if the pair already has one."""
        raise NotImplementedError

    def get_coaching_request(self, request_id):
        raise NotImplementedError

    def list_coaching_requests(self, coach_id=None, client_id=None):
        raise NotImplementedError

    def update_coaching_request(self, request_id, **fields):
        raise NotImplementedError

    # Patients
    def list_patients(self, coach_id):
        raise NotImplementedError

    def get_patient(self, patient_id):
        raise NotImplementedError

    def get_patient_for_user(self, user_id):
        raise NotImplementedError

    def insert_patient(self, **fields):
        raise NotImplementedError

    def update_patient(self, patient_id, **fields):
        raise NotImplementedError

    def delete_patient(self, patient_id):
        raise NotImplementedError

    # Exercises
    def list_exercises(self, coach_id=None):
        raise NotImplementedError

    def get_exercise(self, exercise_id):
        raise NotImplementedError

    def insert_exercise(self, **fields):
        raise NotImplementedError

    def update_exercise(self, exercise_id, **fields):
        raise NotImplementedError

    def delete_exercise(self, exercise_id):
        raise NotImplementedError

    def exercise_in_use(self, exercise_id):
        raise NotImplementedError

    # Plans
    def find_plan(self, patient_id):
        raise NotImplementedError

    def find_or_create_plan(self, patient_id, coach_id, name, description=None):
        raise NotImplementedError

    def list_plans(self, coach_id=None):
        raise NotImplementedError

    # Scheduled exercises
    def list_scheduled_exercises(self, patient_id=None, coach_id=None, start=None, end=None):
        raise NotImplementedError

    def get_scheduled_exercise(self, scheduled_id):
        raise NotImplementedError

    def insert_scheduled_exercises(self, plan_id, entries):
        """Insert all entries or none of them.

        ``entries`` is a list of dicts with exercise_id, scheduled_date,
        time_slot and optional notes. Raises SlotConflictError when any
        entry collides with an existing row for the same plan, date and slot.
        """
        raise NotImplementedError

    def insert_scheduled_exercise(self, plan_id, exercise_id, scheduled_date, time_slot, notes=None):
        entry = {
            "exercise_id": exercise_id,
            "scheduled_date": scheduled_date,
            "time_slot": time_slot,
            "notes": notes,
        }
        return self.insert_scheduled_exercises(plan_id, [entry])[0]

    def set_scheduled_completed(self, scheduled_id, completed):
        raise NotImplementedError

    def delete_scheduled_exercise(self, scheduled_id):
        raise NotImplementedError

    # Progress
    def save_progress(self, patient_id, exercise_id, progress_date, **fields):
        raise NotImplementedError

    def list_progress(self, patient_id, start=None, end=None):
        raise NotImplementedError


class SqlRecordStore(RecordStore):
    """Record store backed by the Flask-SQLAlchemy session."""

    @contextmanager
    def _guard(self, action):
        try:
            yield
        except OperationalError as e:
            db.session.rollback()
            logger.error("Record store unavailable during %s: %s", action, e)
            raise TransientStoreError(f"Database unavailable while trying to {action}") from e

    def _commit(self, action):
        with self._guard(action):
            db.session.commit()

    def get_user(self, user_id):
        with self._guard("load user"):
            return db.session.get(UserAccount, user_id)

    def find_user_by_email(self, email):
        with self._guard("load user"):
            return UserAccount.query.filter_by(email=email).first()

    def insert_user(self, **fields):
        user = UserAccount(**fields)
        db.session.add(user)
        self._commit("create user")
        return user

    def list_users(self, role=None):
        with self._guard("list users"):
            query = UserAccount.query
            if role is not None:
                query = query.filter_by(role=role)
            return query.order_by(UserAccount.surname, UserAccount.name).all()

    def insert_coaching_request(self, coach_id, client_id):
        request = CoachingRequest(coach_id=coach_id, client_id=client_id, status="pending")
        db.session.add(request)
        try:
            self._commit("create coaching request")
        except IntegrityError as e:
            db.session.rollback()
            raise ValidationError(DUPLICATE_REQUEST_MESSAGE) from e
        return request

    def get_coaching_request(self, request_id):
        with self._guard("load coaching request"):
            return db.session.get(CoachingRequest, request_id)

    def list_coaching_requests(self, coach_id=None, client_id=None):
        with self._guard("list coaching requests"):
            query = CoachingRequest.query
            if coach_id is not None:
                query = query.filter_by(coach_id=coach_id)
            if client_id is not None:
                query = query.filter_by(client_id=client_id)
            return query.order_by(CoachingRequest.created_at.desc(), CoachingRequest.id.desc()).all()

    def update_coaching_request(self, request_id, **fields):
        request = self.get_coaching_request(request_id)
        if request is None:
            return None
        for key, value in fields.items():
            setattr(request, key, value)
        self._commit("update coaching request")
        return request

    def list_patients(self, coach_id):
        with self._guard("list patients"):
            query = Patient.query
            if coach_id is not None:
                query = query.filter_by(coach_id=coach_id)
            return query.order_by(Patient.surname, Patient.name).all()

    def get_patient(self, patient_id):
        with self._guard("load patient"):
            return db.session.get(Patient, patient_id)

    def get_patient_for_user(self, user_id):
        with self._guard("load patient"):
            return Patient.query.filter_by(user_id=user_id).first()

    def _commit_patient(self, action, user_id):
        try:
            self._commit(action)
        except IntegrityError as e:
            db.session.rollback()
            if user_id is not None and self.get_patient_for_user(user_id) is not None:
                raise ValidationError(LINKED_ACCOUNT_MESSAGE) from e
            raise

    def insert_patient(self, **fields):
        patient = Patient(**fields)
        db.session.add(patient)
        self._commit_patient("create patient", fields.get("user_id"))
        return patient

    def update_patient(self, patient_id, **fields):
        patient = self.get_patient(patient_id)
        if patient is None:
            return None
        for key, value in fields.items():
            setattr(patient, key, value)
        self._commit_patient("update patient", fields.get("user_id"))
        return patient

    def delete_patient(self, patient_id):
        patient = self.get_patient(patient_id)
        if patient is None:
            return False
        with self._guard("delete patient"):
            plan = ExercisePlan.query.filter_by(patient_id=patient_id).first()
            if plan:
                db.session.delete(plan)
            CoachingRequest.query.filter_by(patient_id=patient_id).update({"patient_id": None})
            ExerciseProgress.query.filter_by(patient_id=patient_id).delete()
            db.session.delete(patient)
            db.session.commit()
        return True

    def list_exercises(self, coach_id=None):
        with self._guard("list exercises"):
            query = Exercise.query.filter(
                db.or_(Exercise.coach_id.is_(None), Exercise.coach_id == coach_id)
            )
            return query.order_by(Exercise.name).all()

    def get_exercise(self, exercise_id):
        with self._guard("load exercise"):
            return db.session.get(Exercise, exercise_id)

    def insert_exercise(self, **fields):
        exercise = Exercise(**fields)
        db.session.add(exercise)
        self._commit("create exercise")
        return exercise

    def update_exercise(self, exercise_id, **fields):
        exercise = self.get_exercise(exercise_id)
        if exercise is None:
            return None
        for key, value in fields.items():
            setattr(exercise, key, value)
        self._commit("update exercise")
        return exercise

    def delete_exercise(self, exercise_id):
        exercise = self.get_exercise(exercise_id)
        if exercise is None:
            return False
        db.session.delete(exercise)
        self._commit("delete exercise")
        return True

    def exercise_in_use(self, exercise_id):
        with self._guard("check exercise usage"):
            return ScheduledExercise.query.filter_by(exercise_id=exercise_id).first() is not None

    def find_plan(self, patient_id):
        with self._guard("load plan"):
            return (
                ExercisePlan.query
                .filter_by(patient_id=patient_id)
                .order_by(ExercisePlan.id)
                .first()
            )

    def find_or_create_plan(self, patient_id, coach_id, name, description=None):
        plan = self.find_plan(patient_id)
        if plan:
            return plan
        plan = ExercisePlan(patient_id=patient_id, coach_id=coach_id, name=name, description=description)
        db.session.add(plan)
        try:
            self._commit("create plan")
        except IntegrityError:
            # Lost the race against another request creating the same container
            db.session.rollback()
            plan = self.find_plan(patient_id)
            if plan is None:
                raise
            return plan
        logger.info("Created exercise plan %s for patient %s", plan.id, patient_id)
        return plan

    def list_plans(self, coach_id=None):
        with self._guard("list plans"):
            query = ExercisePlan.query
            if coach_id is not None:
                query = query.filter_by(coach_id=coach_id)
            return query.order_by(ExercisePlan.created_at.desc(), ExercisePlan.id.desc()).all()

    def _scheduled_query(self):
        return (
            db.session.query(ScheduledExercise, ExercisePlan, Patient, Exercise)
            .join(ExercisePlan, ScheduledExercise.plan_id == ExercisePlan.id)
            .outerjoin(Patient, ExercisePlan.patient_id == Patient.id)
            .outerjoin(Exercise, ScheduledExercise.exercise_id == Exercise.id)
        )

    def list_scheduled_exercises(self, patient_id=None, coach_id=None, start=None, end=None):
        with self._guard("list scheduled exercises"):
            query = self._scheduled_query()
            if patient_id is not None:
                query = query.filter(ExercisePlan.patient_id == patient_id)
            if coach_id is not None:
                query = query.filter(ExercisePlan.coach_id == coach_id)
            if start is not None:
                query = query.filter(ScheduledExercise.scheduled_date >= start)
            if end is not None:
                query = query.filter(ScheduledExercise.scheduled_date <= end)
            results = query.order_by(ScheduledExercise.scheduled_date, ScheduledExercise.id).all()
        return [scheduled_row(*result) for result in results]

    def get_scheduled_exercise(self, scheduled_id):
        with self._guard("load scheduled exercise"):
            result = self._scheduled_query().filter(ScheduledExercise.id == scheduled_id).first()
        return scheduled_row(*result) if result else None

    def insert_scheduled_exercises(self, plan_id, entries):
        created = [
            ScheduledExercise(
                plan_id=plan_id,
                exercise_id=entry["exercise_id"],
                scheduled_date=entry["scheduled_date"],
                time_slot=entry["time_slot"],
                notes=entry.get("notes"),
                completed=False,
            )
            for entry in entries
        ]
        db.session.add_all(created)
        try:
            self._commit("schedule exercises")
        except IntegrityError as e:
            db.session.rollback()
            clash = self._first_clash(plan_id, entries)
            if clash is None:
                raise
            logger.info("Slot conflict on plan %s: %s %s", plan_id, clash["scheduled_date"], clash["time_slot"])
            raise SlotConflictError(clash["time_slot"], clash["scheduled_date"]) from e
        ids = [entry.id for entry in created]
        return [self.get_scheduled_exercise(scheduled_id) for scheduled_id in ids]

    def _first_clash(self, plan_id, entries):
        """The entry that collided, or None when the failure was not a slot collision."""
        seen = set()
        for entry in entries:
            key = (entry["scheduled_date"], entry["time_slot"])
            taken = ScheduledExercise.query.filter_by(
                plan_id=plan_id, scheduled_date=key[0], time_slot=key[1]
            ).first()
            if taken or key in seen:
                return entry
            seen.add(key)
        return None

    def set_scheduled_completed(self, scheduled_id, completed):
        with self._guard("update scheduled exercise"):
            entry = db.session.get(ScheduledExercise, scheduled_id)
        if entry is None:
            return None
        entry.completed = completed
        self._commit("update scheduled exercise")
        return self.get_scheduled_exercise(scheduled_id)

    def delete_scheduled_exercise(self, scheduled_id):
        with self._guard("delete scheduled exercise"):
            entry = db.session.get(ScheduledExercise, scheduled_id)
        if entry is None:
            return False
        db.session.delete(entry)
        self._commit("delete scheduled exercise")
        return True

    def _find_progress(self, patient_id, exercise_id, progress_date):
        return ExerciseProgress.query.filter_by(
            patient_id=patient_id, exercise_id=exercise_id, progress_date=progress_date
        ).first()

    def save_progress(self, patient_id, exercise_id, progress_date, **fields):
        with self._guard("load progress"):
            progress = self._find_progress(patient_id, exercise_id, progress_date)
        if progress is None:
            progress = ExerciseProgress(patient_id=patient_id, exercise_id=exercise_id, progress_date=progress_date)
            db.session.add(progress)
        for key, value in fields.items():
            setattr(progress, key, value)
        try:
            self._commit("save progress")
        except IntegrityError:
            db.session.rollback()
            progress = self._find_progress(patient_id, exercise_id, progress_date)
            if progress is None:
                raise
            for key, value in fields.items():
                setattr(progress, key, value)
            self._commit("save progress")
        return progress

    def list_progress(self, patient_id, start=None, end=None):
        with self._guard("list progress"):
            query = ExerciseProgress.query.filter_by(patient_id=patient_id)
            if start is not None:
                query = query.filter(ExerciseProgress.progress_date >= start)
            if end is not None:
                query = query.filter(ExerciseProgress.progress_date <= end)
            return query.order_by(ExerciseProgress.progress_date, ExerciseProgress.id).all()


class MemoryRecordStore(RecordStore):
    """In-process record store for demo mode. Nothing survives a restart."""

    def __init__(self):
        self.users = {}
        self.patients = {}
        self.exercises = {}
        self.plans = {}
        self.scheduled = {}
        self.progress = {}
        self.requests = {}
        self._ids = itertools.count(1)
        # No database constraint backs this adapter, so check-then-write runs under a lock
        self._lock = threading.Lock()

    def _next_id(self):
        return next(self._ids)

    def get_user(self, user_id):
        return self.users.get(user_id)

    def find_user_by_email(self, email):
        return next((u for u in self.users.values() if u.email == email), None)

    def insert_user(self, **fields):
        user = UserAccount(id=self._next_id(), created_at=utcnow(), **fields)
        self.users[user.id] = user
        return user

    def list_users(self, role=None):
        users = [u for u in self.users.values() if role is None or u.role == role]
        return sorted(users, key=lambda u: (u.surname, u.name))

    def insert_coaching_request(self, coach_id, client_id):
        with self._lock:
            if any(r.coach_id == coach_id and r.client_id == client_id for r in self.requests.values()):
                raise ValidationError(DUPLICATE_REQUEST_MESSAGE)
            now = utcnow()
            request = CoachingRequest(
                id=self._next_id(), coach_id=coach_id, client_id=client_id, status="pending",
                patient_id=None, created_at=now, updated_at=now,
            )
            self.requests[request.id] = request
        return request

    def get_coaching_request(self, request_id):
        return self.requests.get(request_id)

    def list_coaching_requests(self, coach_id=None, client_id=None):
        requests = [
            r for r in self.requests.values()
            if (coach_id is None or r.coach_id == coach_id)
            and (client_id is None or r.client_id == client_id)
        ]
        return sorted(requests, key=lambda r: r.id, reverse=True)

    def update_coaching_request(self, request_id, **fields):
        request = self.requests.get(request_id)
        if request is None:
            return None
        for key, value in fields.items():
            setattr(request, key, value)
        request.updated_at = utcnow()
        return request

    def _check_link(self, user_id, patient_id=None):
        if user_id is None:
            return
        linked = self.get_patient_for_user(user_id)
        if linked is not None and linked.id != patient_id:
            raise ValidationError(LINKED_ACCOUNT_MESSAGE)

    def list_patients(self, coach_id):
        patients = [p for p in self.patients.values() if coach_id is None or p.coach_id == coach_id]
        return sorted(patients, key=lambda p: (p.surname, p.name))

    def get_patient(self, patient_id):
        return self.patients.get(patient_id)

    def get_patient_for_user(self, user_id):
        return next((p for p in self.patients.values() if p.user_id == user_id), None)

    def insert_patient(self, **fields):
        fields.setdefault("limitations", [])
        fields.setdefault("fitness_level", "beginner")
        fields.setdefault("user_id", None)
        with self._lock:
            self._check_link(fields["user_id"])
            patient = Patient(id=self._next_id(), created_at=utcnow(), **fields)
            self.patients[patient.id] = patient
        return patient

    def update_patient(self, patient_id, **fields):
        with self._lock:
            patient = self.patients.get(patient_id)
            if patient is None:
                return None
            if "user_id" in fields:
                self._check_link(fields["user_id"], patient_id)
            for key, value in fields.items():
                setattr(patient, key, value)
        return patient

    def delete_patient(self, patient_id):
        if self.patients.pop(patient_id, None) is None:
            return False
        for request in self.requests.values():
            if request.patient_id == patient_id:
                request.patient_id = None
        plan = self.find_plan(patient_id)
        if plan:
            del self.plans[plan.id]
            for entry_id in [e.id for e in self.scheduled.values() if e.plan_id == plan.id]:
                del self.scheduled[entry_id]
        for key in [k for k in self.progress if k[0] == patient_id]:
            del self.progress[key]
        return True

    def list_exercises(self, coach_id=None):
        visible = [e for e in self.exercises.values() if e.coach_id is None or e.coach_id == coach_id]
        return sorted(visible, key=lambda e: e.name)

    def get_exercise(self, exercise_id):
        return self.exercises.get(exercise_id)

    def insert_exercise(self, **fields):
        fields.setdefault("parameters", {})
        fields.setdefault("coach_id", None)
        exercise = Exercise(id=self._next_id(), created_at=utcnow(), **fields)
        self.exercises[exercise.id] = exercise
        return exercise

    def update_exercise(self, exercise_id, **fields):
        exercise = self.exercises.get(exercise_id)
        if exercise is None:
            return None
        for key, value in fields.items():
            setattr(exercise, key, value)
        return exercise

    def delete_exercise(self, exercise_id):
        return self.exercises.pop(exercise_id, None) is not None

    def exercise_in_use(self, exercise_id):
        return any(e.exercise_id == exercise_id for e in self.scheduled.values())

    def find_plan(self, patient_id):
        plans = sorted((p for p in self.plans.values() if p.patient_id == patient_id), key=lambda p: p.id)
        return plans[0] if plans else None

    def find_or_create_plan(self, patient_id, coach_id, name, description=None):
        with self._lock:
            plan = self.find_plan(patient_id)
            if plan:
                return plan
            now = utcnow()
            plan = ExercisePlan(
                id=self._next_id(), patient_id=patient_id, coach_id=coach_id,
                name=name, description=description, created_at=now, updated_at=now,
            )
            self.plans[plan.id] = plan
        logger.info("Created exercise plan %s for patient %s", plan.id, patient_id)
        return plan

    def list_plans(self, coach_id=None):
        plans = [p for p in self.plans.values() if coach_id is None or p.coach_id == coach_id]
        return sorted(plans, key=lambda p: p.id, reverse=True)

    def _row(self, entry):
        plan = self.plans[entry.plan_id]
        return scheduled_row(
            entry, plan, self.patients.get(plan.patient_id), self.exercises.get(entry.exercise_id)
        )

    def list_scheduled_exercises(self, patient_id=None, coach_id=None, start=None, end=None):
        rows = []
        for entry in sorted(self.scheduled.values(), key=lambda e: (e.scheduled_date, e.id)):
            plan = self.plans[entry.plan_id]
            if patient_id is not None and plan.patient_id != patient_id:
                continue
            if coach_id is not None and plan.coach_id != coach_id:
                continue
            if start is not None and entry.scheduled_date < start:
                continue
            if end is not None and entry.scheduled_date > end:
                continue
            rows.append(self._row(entry))
        return rows

    def get_scheduled_exercise(self, scheduled_id):
        entry = self.scheduled.get(scheduled_id)
        return self._row(entry) if entry else None

    def insert_scheduled_exercises(self, plan_id, entries):
        with self._lock:
            taken = {
                (e.scheduled_date, e.time_slot) for e in self.scheduled.values() if e.plan_id == plan_id
            }
            for entry in entries:
                key = (entry["scheduled_date"], entry["time_slot"])
                if key in taken:
                    raise SlotConflictError(entry["time_slot"], entry["scheduled_date"])
                taken.add(key)
            created = []
            for entry in entries:
                scheduled = ScheduledExercise(
                    id=self._next_id(),
                    plan_id=plan_id,
                    exercise_id=entry["exercise_id"],
                    scheduled_date=entry["scheduled_date"],
                    time_slot=entry["time_slot"],
                    notes=entry.get("notes"),
                    completed=False,
                    created_at=utcnow(),
                )
                self.scheduled[scheduled.id] = scheduled
                created.append(self._row(scheduled))
        return created

    def set_scheduled_completed(self, scheduled_id, completed):
        entry = self.scheduled.get(scheduled_id)
        if entry is None:
            return None
        entry.completed = completed
        return self._row(entry)

    def delete_scheduled_exercise(self, scheduled_id):
        return self.scheduled.pop(scheduled_id, None) is not None

    def save_progress(self, patient_id, exercise_id, progress_date, **fields):
        key = (patient_id, exercise_id, progress_date)
        progress = self.progress.get(key)
        if progress is None:
            progress = ExerciseProgress(
                id=self._next_id(), patient_id=patient_id, exercise_id=exercise_id,
                progress_date=progress_date, created_at=utcnow(),
            )
            self.progress[key] = progress
        for name, value in fields.items():
            setattr(progress, name, value)
        progress.updated_at = utcnow()
        return progress

    def list_progress(self, patient_id, start=None, end=None):
        rows = [
            p for p in self.progress.values()
            if p.patient_id == patient_id
            and (start is None or p.progress_date >= start)
            and (end is None or p.progress_date <= end)
        ]
        return sorted(rows, key=lambda p: (p.progress_date, p.id))
