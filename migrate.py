"""
One-time migration script for PhysioPlan.

Brings an existing SQLite database up to the current schema: adds columns
introduced after the first release, creates the progress and coaching
request tables, and adds the unique indexes that keep one plan per patient,
one patient per client account and one exercise per slot. Databases created
by a current version of the app need nothing.

Usage:
    python migrate.py [path/to/physioplan.db]
"""
import sqlite3
import os
import sys

DB_PATH = os.path.join(os.path.dirname(__file__), "instance", "physioplan.db")


def migrate(db_path=DB_PATH):
    """Apply missing schema changes and return a list of what was done."""
    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()
    changes = []

    def column_exists(table, column):
        cursor.execute(f"PRAGMA table_info({table})")
        columns = [row[1] for row in cursor.fetchall()]
        return column in columns

    def table_exists(table):
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,))
        return cursor.fetchone() is not None

    def constraint_exists(table, name):
        cursor.execute("SELECT name FROM sqlite_master WHERE type='index' AND name=?", (name,))
        if cursor.fetchone() is not None:
            return True
        # Tables created by the app carry the constraint inline
        cursor.execute("SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (table,))
        row = cursor.fetchone()
        return row is not None and name in (row[0] or "")

    def has_duplicates(table, columns):
        cursor.execute(
            f"SELECT {columns}, COUNT(*) FROM {table} GROUP BY {columns} HAVING COUNT(*) > 1"
        )
        return cursor.fetchall()

    print("Running PhysioPlan migration...")

    # --- patient new columns ---
    if table_exists("patient") and not column_exists("patient", "user_id"):
        cursor.execute("ALTER TABLE patient ADD COLUMN user_id INTEGER REFERENCES user_account(id)")
        changes.append("Added patient.user_id")

    # --- scheduled_exercise new columns ---
    if table_exists("scheduled_exercise") and not column_exists("scheduled_exercise", "completed"):
        cursor.execute("ALTER TABLE scheduled_exercise ADD COLUMN completed BOOLEAN DEFAULT 0")
        changes.append("Added scheduled_exercise.completed")

    # --- New tables ---
    if not table_exists("exercise_progress"):
        cursor.execute("""
            CREATE TABLE exercise_progress (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                patient_id INTEGER NOT NULL REFERENCES patient(id),
                exercise_id INTEGER NOT NULL,
                progress_date DATE NOT NULL,
                completed BOOLEAN DEFAULT 0,
                actual_sets INTEGER,
                actual_reps INTEGER,
                actual_duration INTEGER,
                weight FLOAT,
                feedback TEXT,
                exercise_name VARCHAR(200) NOT NULL,
                category VARCHAR(20),
                target_sets INTEGER,
                target_reps INTEGER,
                target_duration INTEGER,
                created_at DATETIME,
                updated_at DATETIME,
                CONSTRAINT uq_exercise_progress_day UNIQUE (patient_id, exercise_id, progress_date)
            )
        """)
        changes.append("Created exercise_progress table")

    if not table_exists("coaching_request"):
        cursor.execute("""
            CREATE TABLE coaching_request (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                coach_id INTEGER NOT NULL REFERENCES user_account(id),
                client_id INTEGER NOT NULL REFERENCES user_account(id),
                status VARCHAR(20) NOT NULL DEFAULT 'pending',
                patient_id INTEGER REFERENCES patient(id),
                created_at DATETIME,
                updated_at DATETIME,
                CONSTRAINT uq_coaching_request_pair UNIQUE (coach_id, client_id)
            )
        """)
        changes.append("Created coaching_request table")

    # --- Unique indexes ---
    if table_exists("scheduled_exercise") and not constraint_exists("scheduled_exercise", "uq_scheduled_exercise_slot"):
        clashes = has_duplicates("scheduled_exercise", "plan_id, scheduled_date, time_slot")
        if clashes:
            print(f"  WARNING: {len(clashes)} double-booked slots found; resolve them and run again")
            for plan_id, scheduled_date, time_slot, count in clashes:
                print(f"    plan {plan_id} {scheduled_date} {time_slot}: {count} entries")
        else:
            cursor.execute(
                "CREATE UNIQUE INDEX uq_scheduled_exercise_slot "
                "ON scheduled_exercise (plan_id, scheduled_date, time_slot)"
            )
            changes.append("Created unique index on scheduled_exercise slots")

    if table_exists("exercise_plan") and not constraint_exists("exercise_plan", "uq_exercise_plan_patient"):
        clashes = has_duplicates("exercise_plan", "patient_id")
        if clashes:
            print(f"  WARNING: {len(clashes)} patients have more than one plan; merge them and run again")
        else:
            cursor.execute("CREATE UNIQUE INDEX uq_exercise_plan_patient ON exercise_plan (patient_id)")
            changes.append("Created unique index on exercise_plan.patient_id")

    if table_exists("patient") and not constraint_exists("patient", "uq_patient_user"):
        cursor.execute(
            "SELECT user_id, COUNT(*) FROM patient WHERE user_id IS NOT NULL "
            "GROUP BY user_id HAVING COUNT(*) > 1"
        )
        clashes = cursor.fetchall()
        if clashes:
            print(f"  WARNING: {len(clashes)} client accounts are linked to more than one patient; unlink them and run again")
        else:
            cursor.execute("CREATE UNIQUE INDEX uq_patient_user ON patient (user_id)")
            changes.append("Created unique index on patient.user_id")

    conn.commit()
    conn.close()

    for change in changes:
        print(f"  {change}")
    print("Migration complete!")
    return changes


if __name__ == "__main__":
    path = sys.argv[1] if len(sys.argv) > 1 else DB_PATH
    if not os.path.exists(path):
        print("No database found. Just run the app and tables will be created automatically.")
        sys.exit(0)
    migrate(path)
