"""
Exercise scheduling engine.

Pure helpers for time slots, plan assembly and roster aggregation, plus
``SchedulingService`` which runs every patient, exercise and schedule
operation against an injected record store after checking ``can_perform``.
"""
import calendar as cal_module
import logging
from collections import namedtuple
from datetime import date, timedelta

from auth import (
    can_perform, VIEW_PATIENT, EDIT_PATIENT, CREATE_PATIENT, SCHEDULE_EXERCISE, COMPLETE_EXERCISE,
    RECORD_PROGRESS, VIEW_ROSTER, CREATE_EXERCISE, VIEW_EXERCISE, EDIT_EXERCISE, DELETE_EXERCISE,
    REQUEST_COACH, RESPOND_TO_REQUEST,
)
from errors import AuthenticationError, AuthorizationError, NotFoundError, SlotConflictError, ValidationError
from models import FITNESS_LEVELS, CATEGORIES, DIFFICULTIES

logger = logging.getLogger(__name__)

TIME_SLOTS = [
    "08:00 - 09:00",
    "09:00 - 10:00",
    "10:00 - 11:00",
    "11:00 - 12:00",
    "13:00 - 14:00",
    "14:00 - 15:00",
    "15:00 - 16:00",
    "16:00 - 17:00",
    "17:00 - 18:00",
    "18:00 - 19:00",
]

WEEK_DAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

INTENSITIES = ("low", "medium", "high")

TimeSlot = namedtuple("TimeSlot", "id start_time end_time")


def available_time_slots(booked, slots=TIME_SLOTS):
    """Slots not yet booked, in canonical order. Unknown booked labels are ignored."""
    booked = set(booked or ())
    return [slot for slot in slots if slot not in booked]


def weekday_for(day):
    return WEEK_DAYS[day.weekday()]


def parse_time_slot(label):
    """Split "HH:MM - HH:MM" into a TimeSlot with an id derived from both halves."""
    parts = (label or "").split(" - ")
    start = parts[0] if parts else ""
    end = parts[1] if len(parts) > 1 else ""
    return TimeSlot(f"ts-{start}-{end}", start, end)


def parse_date(value, field="date"):
    if isinstance(value, date):
        return value
    if not value:
        raise ValidationError(f"Please select a {field}")
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value!r}, expected YYYY-MM-DD")


TRUE_VALUES = (True, "true", "1", 1)
FALSE_VALUES = (False, "false", "0", 0)


def parse_bool(value, field="completed"):
    """Accept JSON booleans and their form-encoded spellings; reject anything else."""
    if isinstance(value, str):
        value = value.strip().lower()
    # bool is an int subclass, so 1/0 and True/False compare equal here
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ValidationError(f"{field} must be true or false")


def week_bounds(day):
    """Monday and Sunday of the week containing ``day``."""
    start = day - timedelta(days=day.weekday())
    return start, start + timedelta(days=6)


def assemble_scheduled_exercises(rows):
    """Turn joined scheduled-exercise rows into the view consumed by calendars and trackers.

    Rows whose exercise no longer exists are dropped with a warning; every
    other row yields exactly one entry.
    """
    views = []
    for row in rows:
        exercise = row["exercise"]
        if exercise is None:
            logger.warning(
                "Scheduled exercise %s references missing exercise %s, skipping",
                row["id"], row["exercise_id"],
            )
            continue
        slot = parse_time_slot(row["time_slot"])
        views.append({
            "id": row["id"],
            "exercise_id": row["exercise_id"],
            "exercise": exercise.to_dict(),
            "day": weekday_for(row["scheduled_date"]),
            "time_slot": slot._asdict(),
            "patient_id": row["patient_id"],
            "notes": row["notes"],
            "date": row["scheduled_date"].isoformat(),
            "completed": row["completed"],
        })
    return views


def clients_with_exercises(rows):
    """Group rows by date, then patient, counting entries per pair in first-seen order."""
    by_date = {}
    for row in rows:
        clients = by_date.setdefault(row["scheduled_date"].isoformat(), [])
        existing = next((c for c in clients if c["patient_id"] == row["patient_id"]), None)
        if existing:
            existing["count"] += 1
        else:
            clients.append({
                "patient_id": row["patient_id"],
                "patient_name": row["patient_name"],
                "count": 1,
            })
    return by_date


def _required_text(data, key, label):
    value = data.get(key)
    if isinstance(value, str):
        value = value.strip()
    if not value:
        raise ValidationError(f"{label} is required")
    return value


def _number(data, key, kind, required=False):
    value = data.get(key)
    if value is None or value == "":
        if required:
            raise ValidationError(f"{key} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number")


def _choice(data, key, choices, default=None):
    value = data.get(key, default)
    if value not in choices:
        raise ValidationError(f"{key} must be one of: {', '.join(choices)}")
    return value


def _entity_id(value, label):
    if value is None or value == "":
        raise ValidationError(f"Please select {label}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label}: {value!r}")


def patient_fields(data, partial=False):
    """Validate a patient payload into model fields."""
    fields = {}
    if not partial or "name" in data:
        fields["name"] = _required_text(data, "name", "Name")
    if not partial or "surname" in data:
        fields["surname"] = _required_text(data, "surname", "Surname")
    for key, kind in (("age", int), ("weight", float), ("height", float)):
        if not partial or key in data:
            fields[key] = _number(data, key, kind, required=True)
    if not partial or "fitness_level" in data:
        fields["fitness_level"] = _choice(data, "fitness_level", FITNESS_LEVELS, "beginner")
    if "limitations" in data:
        limitations = data.get("limitations") or []
        if isinstance(limitations, str):
            limitations = [item.strip() for item in limitations.split(",") if item.strip()]
        fields["limitations"] = sorted(set(limitations))
    elif not partial:
        fields["limitations"] = []
    if "notes" in data:
        fields["notes"] = data.get("notes") or None
    return fields


def exercise_fields(data, partial=False):
    """Validate an exercise payload into model fields."""
    fields = {}
    if not partial or "name" in data:
        fields["name"] = _required_text(data, "name", "Name")
    if not partial or "description" in data:
        fields["description"] = data.get("description") or ""
    if not partial or "category" in data:
        fields["category"] = _choice(data, "category", CATEGORIES)
    if not partial or "difficulty" in data:
        fields["difficulty"] = _choice(data, "difficulty", DIFFICULTIES)
    if not partial or "parameters" in data:
        raw = data.get("parameters") or {}
        if not isinstance(raw, dict):
            raise ValidationError("parameters must be an object")
        params = {}
        for key in ("sets", "repetitions", "duration"):
            value = _number(raw, key, int)
            if value is not None:
                params[key] = value
        if raw.get("intensity") is not None:
            params["intensity"] = _choice(raw, "intensity", INTENSITIES)
        fields["parameters"] = params
    if "notes" in data:
        fields["notes"] = data.get("notes") or None
    return fields


class SchedulingService:
    """Patient, exercise and schedule operations on behalf of a principal."""

    def __init__(self, store):
        self.store = store

    # --- guards ---

    def _require_login(self, principal):
        if not principal.is_authenticated:
            raise AuthenticationError("Please log in first")

    def _authorize(self, principal, action, resource=None):
        self._require_login(principal)
        if not can_perform(principal, action, resource):
            logger.info("Denied %s for principal %s (%s)", action, principal.id, principal.role)
            raise AuthorizationError("You do not have access to this resource")

    def _patient(self, principal, patient_id, action):
        self._require_login(principal)
        patient = self.store.get_patient(patient_id)
        if patient is None:
            raise NotFoundError(f"Patient {patient_id} not found")
        self._authorize(principal, action, patient)
        return patient

    def _exercise(self, principal, exercise_id, action):
        self._require_login(principal)
        exercise = self.store.get_exercise(exercise_id)
        if exercise is None:
            raise NotFoundError(f"Exercise {exercise_id} not found")
        self._authorize(principal, action, exercise)
        return exercise

    def _scheduled(self, principal, scheduled_id, action):
        self._require_login(principal)
        row = self.store.get_scheduled_exercise(scheduled_id)
        if row is None:
            raise NotFoundError(f"Scheduled exercise {scheduled_id} not found")
        self._patient(principal, row["patient_id"], action)
        return row

    def _linkable_client(self, user_id):
        """A client account that no patient record is linked to yet."""
        user = self.store.get_user(user_id)
        if user is None:
            raise ValidationError(f"Client account {user_id} does not exist")
        if user.role != "client":
            raise ValidationError("Only client accounts can be linked to a patient")
        if self.store.get_patient_for_user(user.id) is not None:
            raise ValidationError("This client account is already linked to a patient")
        return user

    # --- patients ---

    def list_patients(self, principal):
        self._require_login(principal)
        if principal.role == "admin":
            return self.store.list_patients(None)
        if principal.role == "client":
            patient = self.store.get_patient_for_user(principal.id)
            return [patient] if patient else []
        return self.store.list_patients(principal.id)

    def get_patient(self, principal, patient_id):
        return self._patient(principal, patient_id, VIEW_PATIENT)

    def create_patient(self, principal, data):
        self._authorize(principal, CREATE_PATIENT)
        fields = patient_fields(data)
        fields["coach_id"] = principal.id
        if principal.role == "admin" and data.get("coach_id"):
            fields["coach_id"] = _entity_id(data["coach_id"], "a coach")
        if data.get("user_id"):
            fields["user_id"] = self._linkable_client(_entity_id(data["user_id"], "a client account")).id
        patient = self.store.insert_patient(**fields)
        logger.info("Coach %s created patient %s", fields["coach_id"], patient.id)
        return patient

    def update_patient(self, principal, patient_id, data):
        self._patient(principal, patient_id, EDIT_PATIENT)
        return self.store.update_patient(patient_id, **patient_fields(data, partial=True))

    def delete_patient(self, principal, patient_id):
        self._patient(principal, patient_id, EDIT_PATIENT)
        if not self.store.delete_patient(patient_id):
            raise NotFoundError(f"Patient {patient_id} not found")
        logger.info("Deleted patient %s", patient_id)

    # --- exercises ---

    def list_exercises(self, principal):
        self._require_login(principal)
        coach_id = principal.id if principal.role in ("coach", "admin") else None
        return self.store.list_exercises(coach_id)

    def get_exercise(self, principal, exercise_id):
        return self._exercise(principal, exercise_id, VIEW_EXERCISE)

    def create_exercise(self, principal, data):
        self._authorize(principal, CREATE_EXERCISE)
        fields = exercise_fields(data)
        # Admins publish system defaults unless they ask for a personal one
        if principal.role == "admin" and data.get("is_default", True):
            fields["coach_id"] = None
        else:
            fields["coach_id"] = principal.id
        exercise = self.store.insert_exercise(**fields)
        logger.info("Created exercise %s (owner %s)", exercise.id, fields["coach_id"])
        return exercise

    def update_exercise(self, principal, exercise_id, data):
        self._exercise(principal, exercise_id, EDIT_EXERCISE)
        return self.store.update_exercise(exercise_id, **exercise_fields(data, partial=True))

    def delete_exercise(self, principal, exercise_id):
        exercise = self._exercise(principal, exercise_id, DELETE_EXERCISE)
        if exercise.is_default:
            raise AuthorizationError("Default exercises cannot be deleted")
        if self.store.exercise_in_use(exercise_id):
            raise ValidationError("This exercise is scheduled for a patient; remove it from their plans first")
        if not self.store.delete_exercise(exercise_id):
            raise NotFoundError(f"Exercise {exercise_id} not found")
        logger.info("Deleted exercise %s", exercise_id)

    # --- slots and schedules ---

    def booked_time_slots(self, principal, patient_id, on_date):
        self._patient(principal, patient_id, VIEW_PATIENT)
        return self._booked(patient_id, parse_date(on_date))

    def _booked(self, patient_id, on_date):
        rows = self.store.list_scheduled_exercises(patient_id=patient_id, start=on_date, end=on_date)
        return [row["time_slot"] for row in rows]

    def available_time_slots(self, principal, patient_id, on_date):
        return available_time_slots(self.booked_time_slots(principal, patient_id, on_date))

    def patient_schedule(self, principal, patient_id, start=None, end=None):
        self._patient(principal, patient_id, VIEW_PATIENT)
        start = parse_date(start) if start else None
        end = parse_date(end) if end else None
        rows = self.store.list_scheduled_exercises(patient_id=patient_id, start=start, end=end)
        return assemble_scheduled_exercises(rows)

    def schedule_for_date(self, principal, on_date):
        """Every exercise the coach has scheduled across all patients for one date."""
        self._authorize(principal, VIEW_ROSTER)
        on_date = parse_date(on_date)
        coach_id = principal.id if principal.role == "coach" else None
        rows = self.store.list_scheduled_exercises(coach_id=coach_id, start=on_date, end=on_date)
        return assemble_scheduled_exercises(rows)

    def clients_for_range(self, principal, start, end):
        self._authorize(principal, VIEW_ROSTER)
        start, end = parse_date(start, "start date"), parse_date(end, "end date")
        if end < start:
            raise ValidationError("End date must not be before start date")
        coach_id = principal.id if principal.role == "coach" else None
        rows = self.store.list_scheduled_exercises(coach_id=coach_id, start=start, end=end)
        return clients_with_exercises(rows)

    def week_overview(self, principal, day):
        start, end = week_bounds(parse_date(day))
        by_date = self.clients_for_range(principal, start, end)
        days = []
        for offset in range(7):
            d = start + timedelta(days=offset)
            days.append({
                "date": d.isoformat(),
                "day": weekday_for(d),
                "clients": by_date.get(d.isoformat(), []),
            })
        return {"start": start.isoformat(), "end": end.isoformat(), "days": days}

    def month_calendar(self, principal, patient_id, year, month, today=None):
        """Monday-first month grid marking the days that have exercises."""
        self._patient(principal, patient_id, VIEW_PATIENT)
        if not 1 <= month <= 12:
            raise ValidationError("Month must be between 1 and 12")
        today = today or date.today()
        first_day = date(year, month, 1)
        last_day = date(year, month, cal_module.monthrange(year, month)[1])
        rows = self.store.list_scheduled_exercises(patient_id=patient_id, start=first_day, end=last_day)

        counts = {}
        done = {}
        for row in rows:
            counts[row["scheduled_date"]] = counts.get(row["scheduled_date"], 0) + 1
            if row["completed"]:
                done[row["scheduled_date"]] = done.get(row["scheduled_date"], 0) + 1

        cal = cal_module.Calendar(firstweekday=0)
        weeks = []
        for week in cal.monthdayscalendar(year, month):
            week_data = []
            for day_num in week:
                if day_num == 0:
                    week_data.append(None)
                    continue
                d = date(year, month, day_num)
                count = counts.get(d, 0)
                week_data.append({
                    "day": day_num,
                    "date": d.isoformat(),
                    "weekday": weekday_for(d),
                    "exercise_count": count,
                    "has_exercises": count > 0,
                    "completed": count > 0 and done.get(d, 0) == count,
                    "is_today": d == today,
                    "is_past": d < today,
                })
            weeks.append(week_data)

        if month == 1:
            prev_year, prev_month = year - 1, 12
        else:
            prev_year, prev_month = year, month - 1
        if month == 12:
            next_year, next_month = year + 1, 1
        else:
            next_year, next_month = year, month + 1

        return {
            "year": year,
            "month": month,
            "month_name": cal_module.month_name[month],
            "weeks": weeks,
            "active_dates": sorted(d.isoformat() for d in counts),
            "prev": {"year": prev_year, "month": prev_month},
            "next": {"year": next_year, "month": next_month},
        }

    # --- assignment ---

    def _check_entry(self, principal, plan_coach_id, data):
        exercise_id = _entity_id(data.get("exercise_id"), "an exercise")
        time_slot = data.get("time_slot")
        if not time_slot:
            raise ValidationError("Please select a time slot")
        if time_slot not in TIME_SLOTS:
            raise ValidationError(f"Unknown time slot: {time_slot!r}")
        scheduled_date = parse_date(data.get("date") or data.get("scheduled_date"))

        exercise = self.store.get_exercise(exercise_id)
        if exercise is None:
            raise NotFoundError(f"Exercise {exercise_id} not found")
        if exercise.coach_id not in (None, plan_coach_id) and principal.role != "admin":
            raise AuthorizationError("This exercise belongs to another coach")
        return {
            "exercise_id": exercise_id,
            "scheduled_date": scheduled_date,
            "time_slot": time_slot,
            "notes": data.get("notes") or None,
        }

    def _default_plan_name(self, patient):
        return f"{patient.name}'s Exercise Plan"

    def assign_exercise(self, principal, patient_id, exercise_id, scheduled_date, time_slot, notes=None):
        """Schedule one exercise for a patient, creating their plan on first use."""
        patient = self._patient(principal, patient_id, SCHEDULE_EXERCISE)
        entry = self._check_entry(principal, patient.coach_id, {
            "exercise_id": exercise_id,
            "date": scheduled_date,
            "time_slot": time_slot,
            "notes": notes,
        })
        if entry["time_slot"] in self._booked(patient_id, entry["scheduled_date"]):
            raise SlotConflictError(entry["time_slot"], entry["scheduled_date"])

        plan = self.store.find_or_create_plan(
            patient_id, patient.coach_id, self._default_plan_name(patient),
            "Exercise plan created from patient profile",
        )
        row = self.store.insert_scheduled_exercise(plan.id, **entry)
        logger.info(
            "Scheduled exercise %s for patient %s on %s at %s",
            entry["exercise_id"], patient_id, entry["scheduled_date"], entry["time_slot"],
        )
        return assemble_scheduled_exercises([row])[0]

    def create_plan(self, principal, patient_id, name, description=None, entries=()):
        """Attach a batch of exercises to a patient's plan; all are scheduled or none are."""
        if not (name or "").strip():
            raise ValidationError("Please enter a plan name")
        if patient_id in (None, ""):
            raise ValidationError("Please select a patient")
        patient = self._patient(principal, _entity_id(patient_id, "a patient"), SCHEDULE_EXERCISE)
        if not entries:
            raise ValidationError("Please add at least one exercise to the plan")
        if not isinstance(entries, (list, tuple)) or not all(isinstance(data, dict) for data in entries):
            raise ValidationError("exercises must be a list of objects")

        checked = [self._check_entry(principal, patient.coach_id, data) for data in entries]
        seen = set()
        for entry in checked:
            key = (entry["scheduled_date"], entry["time_slot"])
            if key in seen:
                raise SlotConflictError(entry["time_slot"], entry["scheduled_date"])
            seen.add(key)
        for on_date in {entry["scheduled_date"] for entry in checked}:
            booked = set(self._booked(patient.id, on_date))
            for entry in checked:
                if entry["scheduled_date"] == on_date and entry["time_slot"] in booked:
                    raise SlotConflictError(entry["time_slot"], on_date)

        plan = self.store.find_or_create_plan(patient.id, patient.coach_id, name.strip(), description)
        rows = self.store.insert_scheduled_exercises(plan.id, checked)
        logger.info("Added %d exercises to plan %s for patient %s", len(rows), plan.id, patient.id)
        return plan, assemble_scheduled_exercises(rows)

    def list_plans(self, principal):
        self._authorize(principal, VIEW_ROSTER)
        coach_id = principal.id if principal.role == "coach" else None
        plans = self.store.list_plans(coach_id)
        result = []
        for plan in plans:
            patient = self.store.get_patient(plan.patient_id)
            item = plan.to_dict()
            item["patient_name"] = patient.full_name if patient else None
            result.append(item)
        return result

    def remove_scheduled_exercise(self, principal, scheduled_id):
        self._scheduled(principal, scheduled_id, SCHEDULE_EXERCISE)
        if not self.store.delete_scheduled_exercise(scheduled_id):
            raise NotFoundError(f"Scheduled exercise {scheduled_id} not found")
        logger.info("Removed scheduled exercise %s", scheduled_id)

    def set_completed(self, principal, scheduled_id, completed):
        self._scheduled(principal, scheduled_id, COMPLETE_EXERCISE)
        row = self.store.set_scheduled_completed(scheduled_id, parse_bool(completed))
        if row is None:
            raise NotFoundError(f"Scheduled exercise {scheduled_id} not found")
        views = assemble_scheduled_exercises([row])
        return views[0] if views else None

    # --- progress ---

    def record_progress(self, principal, patient_id, data):
        """Record how a scheduled exercise was actually performed on a date."""
        patient = self._patient(principal, patient_id, RECORD_PROGRESS)
        exercise_id = _entity_id(data.get("exercise_id"), "an exercise")
        on_date = parse_date(data.get("date"))
        exercise = self.store.get_exercise(exercise_id)
        if exercise is None:
            raise NotFoundError(f"Exercise {exercise_id} not found")

        rows = [
            row for row in self.store.list_scheduled_exercises(patient_id=patient.id, start=on_date, end=on_date)
            if row["exercise_id"] == exercise_id
        ]
        if not rows:
            raise ValidationError(f"{exercise.name} is not scheduled on {on_date.isoformat()}")

        params = exercise.parameters or {}
        completed = parse_bool(data.get("completed", False))
        progress = self.store.save_progress(
            patient.id, exercise_id, on_date,
            completed=completed,
            actual_sets=_number(data, "actual_sets", int),
            actual_reps=_number(data, "actual_reps", int),
            actual_duration=_number(data, "actual_duration", int),
            weight=_number(data, "weight", float),
            feedback=data.get("feedback") or None,
            exercise_name=exercise.name,
            category=exercise.category,
            target_sets=params.get("sets"),
            target_reps=params.get("repetitions"),
            target_duration=params.get("duration"),
        )
        for row in rows:
            if row["completed"] != completed:
                self.store.set_scheduled_completed(row["id"], completed)
        logger.info("Recorded progress for patient %s, exercise %s on %s", patient.id, exercise_id, on_date)
        return progress

    def list_progress(self, principal, patient_id, start=None, end=None):
        self._patient(principal, patient_id, VIEW_PATIENT)
        start = parse_date(start) if start else None
        end = parse_date(end) if end else None
        return self.store.list_progress(patient_id, start, end)

    # --- coaching requests ---

    def list_coaches(self, principal):
        self._require_login(principal)
        return self.store.list_users(role="coach")

    def _request_view(self, request):
        coach = self.store.get_user(request.coach_id)
        client = self.store.get_user(request.client_id)
        view = request.to_dict()
        view["coach_name"] = f"{coach.name} {coach.surname}".strip() if coach else None
        view["client_name"] = f"{client.name} {client.surname}".strip() if client else None
        return view

    def request_coach(self, principal, coach_id):
        """A client asks a coach to take them on. One request per coach and client."""
        self._authorize(principal, REQUEST_COACH)
        coach_id = _entity_id(coach_id, "a coach")
        coach = self.store.get_user(coach_id)
        if coach is None or coach.role != "coach":
            raise NotFoundError(f"Coach {coach_id} not found")
        request = self.store.insert_coaching_request(coach.id, principal.id)
        logger.info("Client %s requested coach %s", principal.id, coach.id)
        return self._request_view(request)

    def list_coaching_requests(self, principal):
        self._require_login(principal)
        if principal.role == "admin":
            requests = self.store.list_coaching_requests()
        elif principal.role == "coach":
            requests = self.store.list_coaching_requests(coach_id=principal.id)
        else:
            requests = self.store.list_coaching_requests(client_id=principal.id)
        return [self._request_view(r) for r in requests]

    def _pending_request(self, principal, request_id):
        self._require_login(principal)
        request = self.store.get_coaching_request(request_id)
        if request is None:
            raise NotFoundError(f"Coaching request {request_id} not found")
        self._authorize(principal, RESPOND_TO_REQUEST, request)
        if request.status != "pending":
            raise ValidationError(f"This request has already been {request.status}")
        return request

    def accept_coaching_request(self, principal, request_id, patient_id=None):
        """Accept a client and link their account to a patient record.

        With ``patient_id`` the coach's existing record is linked; otherwise a
        new beginner profile is created from the client's account.
        """
        request = self._pending_request(principal, request_id)
        client = self._linkable_client(request.client_id)
        if patient_id not in (None, ""):
            patient = self.store.get_patient(_entity_id(patient_id, "a patient"))
            if patient is None:
                raise NotFoundError(f"Patient {patient_id} not found")
            if patient.coach_id != request.coach_id:
                raise AuthorizationError("You do not have access to this resource")
            if patient.user_id is not None:
                raise ValidationError("This patient is already linked to another account")
            patient = self.store.update_patient(patient.id, user_id=client.id)
        else:
            patient = self.store.insert_patient(
                name=client.name, surname=client.surname or "", age=30, weight=70.0, height=170.0,
                fitness_level="beginner", limitations=[], coach_id=request.coach_id, user_id=client.id,
            )
        request = self.store.update_coaching_request(request.id, status="accepted", patient_id=patient.id)
        logger.info("Coach %s accepted client %s as patient %s", request.coach_id, client.id, patient.id)
        return self._request_view(request)

    def reject_coaching_request(self, principal, request_id):
        request = self._pending_request(principal, request_id)
        request = self.store.update_coaching_request(request.id, status="rejected")
        logger.info("Coach %s rejected client %s", request.coach_id, request.client_id)
        return self._request_view(request)
