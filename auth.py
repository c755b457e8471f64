import logging
from collections import namedtuple

from flask import session
from werkzeug.security import generate_password_hash, check_password_hash

from errors import AuthenticationError, ValidationError

logger = logging.getLogger(__name__)

SELF_SERVICE_ROLES = ("coach", "client")

# Actions checked by can_perform
VIEW_PATIENT = "view_patient"
EDIT_PATIENT = "edit_patient"
CREATE_PATIENT = "create_patient"
SCHEDULE_EXERCISE = "schedule_exercise"
COMPLETE_EXERCISE = "complete_exercise"
RECORD_PROGRESS = "record_progress"
VIEW_ROSTER = "view_roster"
CREATE_EXERCISE = "create_exercise"
VIEW_EXERCISE = "view_exercise"
EDIT_EXERCISE = "edit_exercise"
DELETE_EXERCISE = "delete_exercise"
REQUEST_COACH = "request_coach"
RESPOND_TO_REQUEST = "respond_to_request"

COACH_PATIENT_ACTIONS = {VIEW_PATIENT, EDIT_PATIENT, SCHEDULE_EXERCISE, COMPLETE_EXERCISE}
CLIENT_PATIENT_ACTIONS = {VIEW_PATIENT, COMPLETE_EXERCISE, RECORD_PROGRESS}


class Principal(namedtuple("Principal", "id role")):
    @property
    def is_authenticated(self):
        return self.id is not None


ANONYMOUS = Principal(None, None)


def can_perform(principal, action, resource=None):
    """Single authorization policy for every write and every scoped read.

    ``resource`` is the Patient for patient-scoped actions, the Exercise
    for exercise actions and the CoachingRequest when answering a request. Admins may do anything; coaches act on their own
    patients and exercises; clients only see and track their own patient
    record.
    """
    if not principal.is_authenticated:
        return False
    if principal.role == "admin":
        return True

    if action in (CREATE_PATIENT, CREATE_EXERCISE, VIEW_ROSTER):
        return principal.role == "coach"

    if action == REQUEST_COACH:
        return principal.role == "client"

    if action == RESPOND_TO_REQUEST:
        return principal.role == "coach" and resource is not None and resource.coach_id == principal.id

    if action in COACH_PATIENT_ACTIONS | CLIENT_PATIENT_ACTIONS:
        if resource is None:
            return False
        if principal.role == "coach":
            return action in COACH_PATIENT_ACTIONS and resource.coach_id == principal.id
        if principal.role == "client":
            return action in CLIENT_PATIENT_ACTIONS and resource.user_id == principal.id
        return False

    if action == VIEW_EXERCISE:
        return resource is not None and resource.coach_id in (None, principal.id)

    if action in (EDIT_EXERCISE, DELETE_EXERCISE):
        # Defaults have no owner, so only admins get past this
        return (
            principal.role == "coach"
            and resource is not None
            and resource.coach_id is not None
            and resource.coach_id == principal.id
        )

    return False


class SessionIdentityProvider:
    """Identity provider over Flask's signed cookie session."""

    def __init__(self, store):
        self.store = store

    def get_current_principal(self):
        user_id = session.get("user_id")
        if user_id is None:
            return ANONYMOUS
        user = self.store.get_user(user_id)
        if user is None:
            session.clear()
            return ANONYMOUS
        return Principal(user.id, user.role)

    def current_user(self):
        principal = self.get_current_principal()
        if not principal.is_authenticated:
            return None
        return self.store.get_user(principal.id)

    def login(self, email, password):
        user = self.store.find_user_by_email((email or "").strip().lower())
        if user is None or not check_password_hash(user.password_hash, password or ""):
            logger.info("Failed login for %s", email)
            raise AuthenticationError("Invalid email or password")
        session.clear()
        session["user_id"] = user.id
        logger.info("User %s logged in as %s", user.id, user.role)
        return user

    def logout(self):
        session.clear()

    def sign_up(self, email, password, name, surname="", role="coach"):
        email = (email or "").strip().lower()
        if not email or not password or not name:
            raise ValidationError("Email, password and name are required")
        if role not in SELF_SERVICE_ROLES:
            raise ValidationError(f"Role must be one of: {', '.join(SELF_SERVICE_ROLES)}")
        if self.store.find_user_by_email(email) is not None:
            raise ValidationError("An account with this email already exists")
        user = create_account(self.store, email, password, name, surname, role)
        session.clear()
        session["user_id"] = user.id
        return user


def create_account(store, email, password, name, surname="", role="coach"):
    return store.insert_user(
        email=email,
        name=name,
        surname=surname or "",
        role=role,
        password_hash=generate_password_hash(password),
    )
