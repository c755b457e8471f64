import sqlite3

from defaults import DEMO_ACCOUNTS, DEMO_PASSWORD, seed_default_exercises, seed_demo_accounts
from migrate import migrate
from models import db
from sqlalchemy import create_engine
from werkzeug.security import check_password_hash


def make_old_database(path, duplicate_slot=False):
    conn = sqlite3.connect(path)
    conn.executescript("""
        CREATE TABLE patient (id INTEGER PRIMARY KEY, name VARCHAR(100), surname VARCHAR(100), coach_id INTEGER);
        CREATE TABLE exercise_plan (id INTEGER PRIMARY KEY, patient_id INTEGER, coach_id INTEGER, name VARCHAR(200));
        CREATE TABLE scheduled_exercise (
            id INTEGER PRIMARY KEY, plan_id INTEGER, exercise_id INTEGER,
            scheduled_date DATE, time_slot VARCHAR(20), notes TEXT
        );
        INSERT INTO patient VALUES (1, 'Emma', 'Wilson', 1);
        INSERT INTO exercise_plan VALUES (1, 1, 1, 'Plan');
        INSERT INTO scheduled_exercise VALUES (1, 1, 1, '2024-06-01', '08:00 - 09:00', NULL);
    """)
    if duplicate_slot:
        conn.execute("INSERT INTO scheduled_exercise VALUES (2, 1, 2, '2024-06-01', '08:00 - 09:00', NULL)")
    conn.commit()
    conn.close()


def columns(path, table):
    conn = sqlite3.connect(path)
    names = [row[1] for row in conn.execute(f"PRAGMA table_info({table})")]
    conn.close()
    return names


def test_migrate_old_database(tmp_path):
    path = str(tmp_path / "physioplan.db")
    make_old_database(path)

    changes = migrate(path)

    assert "Added patient.user_id" in changes
    assert "Added scheduled_exercise.completed" in changes
    assert "Created unique index on patient.user_id" in changes
    assert "user_id" in columns(path, "patient")
    assert "progress_date" in columns(path, "exercise_progress")
    assert "status" in columns(path, "coaching_request")

    conn = sqlite3.connect(path)
    try:
        conn.execute("INSERT INTO scheduled_exercise (plan_id, exercise_id, scheduled_date, time_slot) "
                     "VALUES (1, 3, '2024-06-01', '08:00 - 09:00')")
        raised = False
    except sqlite3.IntegrityError:
        raised = True
    conn.close()
    assert raised

    assert migrate(path) == []


def test_migrate_leaves_double_bookings_for_review(tmp_path, capsys):
    path = str(tmp_path / "physioplan.db")
    make_old_database(path, duplicate_slot=True)

    changes = migrate(path)

    assert "Created unique index on scheduled_exercise slots" not in changes
    assert "double-booked" in capsys.readouterr().out
    conn = sqlite3.connect(path)
    assert conn.execute("SELECT COUNT(*) FROM scheduled_exercise").fetchone()[0] == 2
    conn.close()


def test_migrate_leaves_shared_client_links_for_review(tmp_path, capsys):
    path = str(tmp_path / "physioplan.db")
    make_old_database(path)
    migrate(path)
    conn = sqlite3.connect(path)
    conn.execute("DROP INDEX uq_patient_user")
    conn.execute("UPDATE patient SET user_id = 5")
    conn.execute("INSERT INTO patient (id, name, surname, coach_id, user_id) VALUES (2, 'Emma', 'Wilson', 2, 5)")
    conn.commit()
    conn.close()

    assert migrate(path) == []
    assert "linked to more than one patient" in capsys.readouterr().out


def test_current_schema_needs_nothing(tmp_path):
    path = tmp_path / "current.db"
    engine = create_engine(f"sqlite:///{path}")
    db.metadata.create_all(engine)
    engine.dispose()
    assert migrate(str(path)) == []


def test_demo_seed(memory_store):
    assert seed_default_exercises(memory_store) == 6
    assert seed_demo_accounts(memory_store) == len(DEMO_ACCOUNTS)
    assert seed_demo_accounts(memory_store) == 0

    client = memory_store.find_user_by_email("john.smith@client.com")
    assert check_password_hash(client.password_hash, DEMO_PASSWORD)
    patient = memory_store.get_patient_for_user(client.id)
    assert patient.full_name == "John Smith"
    coach = memory_store.find_user_by_email("sarah.johnson@physio.com")
    assert patient.coach_id == coach.id
