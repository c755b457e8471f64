import logging
import os
from datetime import date

from dotenv import load_dotenv
from flask import Flask, request, jsonify, send_file

load_dotenv()

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "physioplan-dev-key-change-me")

app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("DATABASE_URL", "sqlite:///physioplan.db")
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

from models import db
from errors import PhysioPlanError, ValidationError
from store import SqlRecordStore, MemoryRecordStore
from auth import SessionIdentityProvider
from scheduling import SchedulingService, TIME_SLOTS, available_time_slots
from defaults import seed_default_exercises, seed_demo_accounts

db.init_app(app)

STORE_BACKEND = os.environ.get("STORE_BACKEND", "sql")

if STORE_BACKEND == "memory":
    store = MemoryRecordStore()
else:
    store = SqlRecordStore()

identity = SessionIdentityProvider(store)
scheduler = SchedulingService(store)

with app.app_context():
    db.create_all()
    if os.environ.get("SEED_DEFAULTS", "1") == "1":
        seed_default_exercises(store)
    if STORE_BACKEND == "memory":
        seed_demo_accounts(store)

logger.info("PhysioPlan started with %s record store", STORE_BACKEND)


@app.errorhandler(PhysioPlanError)
def handle_error(error):
    if error.status_code >= 500:
        logger.error("%s: %s", error.kind, error.message)
    else:
        logger.info("%s %s rejected: %s", request.method, request.path, error.message)
    return jsonify({"error": error.kind, "message": error.message}), error.status_code


def principal():
    return identity.get_current_principal()


def payload():
    data = request.get_json(silent=True)
    if data is None:
        return request.form.to_dict()
    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object")
    return data


# --- Identity ---

@app.route("/signup", methods=["POST"])
def signup():
    data = payload()
    user = identity.sign_up(
        data.get("email"), data.get("password"), data.get("name"),
        data.get("surname", ""), data.get("role", "coach"),
    )
    return jsonify(user.to_dict()), 201


@app.route("/login", methods=["POST"])
def login():
    data = payload()
    user = identity.login(data.get("email"), data.get("password"))
    return jsonify(user.to_dict())


@app.route("/logout", methods=["POST"])
def logout():
    identity.logout()
    return jsonify({"status": "ok"})


@app.route("/me")
def me():
    user = identity.current_user()
    if user is None:
        return jsonify({"authenticated": False})
    result = user.to_dict()
    result["authenticated"] = True
    return jsonify(result)


# --- Coaching requests ---

@app.route("/coaches")
def coaches():
    return jsonify([c.to_dict() for c in scheduler.list_coaches(principal())])


@app.route("/coaching-requests", methods=["GET", "POST"])
def coaching_requests():
    if request.method == "POST":
        data = payload()
        return jsonify(scheduler.request_coach(principal(), data.get("coach_id"))), 201
    return jsonify(scheduler.list_coaching_requests(principal()))


@app.route("/coaching-requests/<int:request_id>/accept", methods=["POST"])
def accept_coaching_request(request_id):
    data = payload()
    return jsonify(scheduler.accept_coaching_request(principal(), request_id, data.get("patient_id")))


@app.route("/coaching-requests/<int:request_id>/reject", methods=["POST"])
def reject_coaching_request(request_id):
    return jsonify(scheduler.reject_coaching_request(principal(), request_id))


# --- Patients ---

@app.route("/patients", methods=["GET", "POST"])
def patients():
    if request.method == "POST":
        patient = scheduler.create_patient(principal(), payload())
        return jsonify(patient.to_dict()), 201
    return jsonify([p.to_dict() for p in scheduler.list_patients(principal())])


@app.route("/patients/<int:patient_id>", methods=["GET", "PUT", "DELETE"])
def patient_detail(patient_id):
    if request.method == "PUT":
        patient = scheduler.update_patient(principal(), patient_id, payload())
        return jsonify(patient.to_dict())
    if request.method == "DELETE":
        scheduler.delete_patient(principal(), patient_id)
        return "", 204
    return jsonify(scheduler.get_patient(principal(), patient_id).to_dict())


@app.route("/patients/<int:patient_id>/schedule", methods=["GET", "POST"])
def patient_schedule(patient_id):
    if request.method == "POST":
        data = payload()
        entry = scheduler.assign_exercise(
            principal(), patient_id, data.get("exercise_id"),
            data.get("date"), data.get("time_slot"), data.get("notes"),
        )
        return jsonify(entry), 201

    on_date = request.args.get("date")
    start = request.args.get("start", on_date)
    end = request.args.get("end", on_date)
    return jsonify(scheduler.patient_schedule(principal(), patient_id, start, end))


@app.route("/patients/<int:patient_id>/slots")
def patient_slots(patient_id):
    on_date = request.args.get("date", date.today().isoformat())
    booked = scheduler.booked_time_slots(principal(), patient_id, on_date)
    return jsonify({
        "date": on_date,
        "all": TIME_SLOTS,
        "booked": booked,
        "available": available_time_slots(booked),
    })


@app.route("/patients/<int:patient_id>/calendar")
def patient_calendar(patient_id):
    today = date.today()
    year = request.args.get("year", today.year, type=int)
    month = request.args.get("month", today.month, type=int)
    return jsonify(scheduler.month_calendar(principal(), patient_id, year, month, today=today))


@app.route("/patients/<int:patient_id>/progress", methods=["GET", "POST"])
def patient_progress(patient_id):
    if request.method == "POST":
        progress = scheduler.record_progress(principal(), patient_id, payload())
        return jsonify(progress.to_dict()), 201
    rows = scheduler.list_progress(
        principal(), patient_id, request.args.get("start"), request.args.get("end")
    )
    return jsonify([p.to_dict() for p in rows])


@app.route("/patients/<int:patient_id>/export")
def patient_export(patient_id):
    current = principal()
    patient = scheduler.get_patient(current, patient_id)
    schedule = scheduler.patient_schedule(current, patient_id)
    progress = scheduler.list_progress(current, patient_id)

    from export import generate_xlsx
    output = generate_xlsx(patient, schedule, progress)
    return send_file(
        output,
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        as_attachment=True,
        download_name=f"plan_{patient.surname.lower()}_{date.today().isoformat()}.xlsx",
    )


# --- Exercises ---

@app.route("/exercises", methods=["GET", "POST"])
def exercises():
    if request.method == "POST":
        exercise = scheduler.create_exercise(principal(), payload())
        return jsonify(exercise.to_dict()), 201
    return jsonify([e.to_dict() for e in scheduler.list_exercises(principal())])


@app.route("/exercises/<int:exercise_id>", methods=["GET", "PUT", "DELETE"])
def exercise_detail(exercise_id):
    if request.method == "PUT":
        exercise = scheduler.update_exercise(principal(), exercise_id, payload())
        return jsonify(exercise.to_dict())
    if request.method == "DELETE":
        scheduler.delete_exercise(principal(), exercise_id)
        return "", 204
    return jsonify(scheduler.get_exercise(principal(), exercise_id).to_dict())


# --- Scheduled entries ---

@app.route("/scheduled/<int:scheduled_id>", methods=["PATCH", "DELETE"])
def scheduled_detail(scheduled_id):
    if request.method == "DELETE":
        scheduler.remove_scheduled_exercise(principal(), scheduled_id)
        return "", 204
    data = payload()
    if "completed" not in data:
        raise ValidationError("Nothing to update")
    return jsonify(scheduler.set_completed(principal(), scheduled_id, data["completed"]))


# --- Coach views ---

@app.route("/schedule")
def coach_schedule():
    on_date = request.args.get("date", date.today().isoformat())
    return jsonify(scheduler.schedule_for_date(principal(), on_date))


@app.route("/schedule/week")
def coach_week():
    day = request.args.get("start", date.today().isoformat())
    return jsonify(scheduler.week_overview(principal(), day))


@app.route("/plans", methods=["GET", "POST"])
def plans():
    if request.method == "POST":
        data = payload()
        plan, entries = scheduler.create_plan(
            principal(), data.get("patient_id"), data.get("name"),
            data.get("description"), data.get("exercises") or [],
        )
        result = plan.to_dict()
        result["exercises"] = entries
        return jsonify(result), 201
    return jsonify(scheduler.list_plans(principal()))


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
