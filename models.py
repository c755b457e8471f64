from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone

db = SQLAlchemy()

ROLES = ("coach", "client", "admin")
FITNESS_LEVELS = ("beginner", "intermediate", "advanced")
CATEGORIES = ("strength", "cardio", "flexibility", "balance", "rehabilitation")
DIFFICULTIES = ("easy", "medium", "hard")
REQUEST_STATUSES = ("pending", "accepted", "rejected")


def utcnow():
    return datetime.now(timezone.utc)


class UserAccount(db.Model):
    __tablename__ = "user_account"
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    surname = db.Column(db.String(100), nullable=False, default="")
    role = db.Column(db.String(20), nullable=False, default="coach")
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "surname": self.surname,
            "role": self.role,
        }


class Patient(db.Model):
    __tablename__ = "patient"
    __table_args__ = (db.UniqueConstraint("user_id", name="uq_patient_user"),)
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    surname = db.Column(db.String(100), nullable=False)
    age = db.Column(db.Integer, nullable=False)
    weight = db.Column(db.Float, nullable=False)
    height = db.Column(db.Float, nullable=False)
    fitness_level = db.Column(db.String(20), nullable=False, default="beginner")
    limitations = db.Column(db.JSON, default=list)
    notes = db.Column(db.Text)
    coach_id = db.Column(db.Integer, db.ForeignKey("user_account.id"), nullable=False)
    # Client account of the same person, for the self-service view
    user_id = db.Column(db.Integer, db.ForeignKey("user_account.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    @property
    def full_name(self):
        return f"{self.name} {self.surname}"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "surname": self.surname,
            "age": self.age,
            "weight": self.weight,
            "height": self.height,
            "fitness_level": self.fitness_level,
            "limitations": list(self.limitations or []),
            "notes": self.notes,
            "coach_id": self.coach_id,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class CoachingRequest(db.Model):
    __tablename__ = "coaching_request"
    __table_args__ = (db.UniqueConstraint("coach_id", "client_id", name="uq_coaching_request_pair"),)
    id = db.Column(db.Integer, primary_key=True)
    coach_id = db.Column(db.Integer, db.ForeignKey("user_account.id"), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey("user_account.id"), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending")
    # Set when accepted: the patient record the client account was linked to
    patient_id = db.Column(db.Integer, db.ForeignKey("patient.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "coach_id": self.coach_id,
            "client_id": self.client_id,
            "status": self.status,
            "patient_id": self.patient_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Exercise(db.Model):
    __tablename__ = "exercise"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    category = db.Column(db.String(20), nullable=False)
    difficulty = db.Column(db.String(20), nullable=False)
    # sets, repetitions, duration (minutes), intensity
    parameters = db.Column(db.JSON, default=dict)
    notes = db.Column(db.Text)
    # NULL owner marks a system default shared by every coach
    coach_id = db.Column(db.Integer, db.ForeignKey("user_account.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    @property
    def is_default(self):
        return self.coach_id is None

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "difficulty": self.difficulty,
            "parameters": dict(self.parameters or {}),
            "notes": self.notes,
            "coach_id": self.coach_id,
            "is_default": self.is_default,
        }


class ExercisePlan(db.Model):
    __tablename__ = "exercise_plan"
    __table_args__ = (db.UniqueConstraint("patient_id", name="uq_exercise_plan_patient"),)
    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey("patient.id"), nullable=False)
    coach_id = db.Column(db.Integer, db.ForeignKey("user_account.id"), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    patient = db.relationship("Patient")
    scheduled_exercises = db.relationship(
        "ScheduledExercise", backref="plan", cascade="all, delete-orphan",
        order_by="ScheduledExercise.scheduled_date",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "coach_id": self.coach_id,
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ScheduledExercise(db.Model):
    __tablename__ = "scheduled_exercise"
    __table_args__ = (
        db.UniqueConstraint("plan_id", "scheduled_date", "time_slot", name="uq_scheduled_exercise_slot"),
    )
    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("exercise_plan.id"), nullable=False)
    exercise_id = db.Column(db.Integer, db.ForeignKey("exercise.id"), nullable=False)
    scheduled_date = db.Column(db.Date, nullable=False)
    time_slot = db.Column(db.String(20), nullable=False)  # "HH:MM - HH:MM"
    notes = db.Column(db.Text)
    completed = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    exercise = db.relationship("Exercise")


class ExerciseProgress(db.Model):
    __tablename__ = "exercise_progress"
    __table_args__ = (
        db.UniqueConstraint("patient_id", "exercise_id", "progress_date", name="uq_exercise_progress_day"),
    )
    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey("patient.id"), nullable=False)
    # No FK: the history outlives the exercise and its schedule entries
    exercise_id = db.Column(db.Integer, nullable=False)
    progress_date = db.Column(db.Date, nullable=False)
    completed = db.Column(db.Boolean, default=False)
    actual_sets = db.Column(db.Integer)
    actual_reps = db.Column(db.Integer)
    actual_duration = db.Column(db.Integer)
    weight = db.Column(db.Float)  # kg
    feedback = db.Column(db.Text)
    exercise_name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(20))
    target_sets = db.Column(db.Integer)
    target_reps = db.Column(db.Integer)
    target_duration = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "exercise_id": self.exercise_id,
            "date": self.progress_date.isoformat(),
            "completed": bool(self.completed),
            "actual_sets": self.actual_sets,
            "actual_reps": self.actual_reps,
            "actual_duration": self.actual_duration,
            "weight": self.weight,
            "feedback": self.feedback,
            "exercise_name": self.exercise_name,
            "category": self.category,
            "target_sets": self.target_sets,
            "target_reps": self.target_reps,
            "target_duration": self.target_duration,
        }
