import logging

from auth import create_account

logger = logging.getLogger(__name__)

DEFAULT_EXERCISES = [
    {
        "name": "Gentle Back Stretches",
        "description": "Series of gentle stretches targeting the lower back to relieve tension and improve flexibility.",
        "category": "flexibility",
        "difficulty": "easy",
        "parameters": {"repetitions": 10, "sets": 3, "duration": 15, "intensity": "low"},
        "notes": "Focus on controlled movements and proper breathing",
    },
    {
        "name": "Knee Stabilization",
        "description": "Exercises designed to strengthen the muscles around the knee joint for better stability.",
        "category": "rehabilitation",
        "difficulty": "medium",
        "parameters": {"repetitions": 12, "sets": 3, "duration": 20, "intensity": "medium"},
        "notes": "Use resistance band for progressive overload",
    },
    {
        "name": "Core Strengthening",
        "description": "A series of exercises targeting the abdominal and lower back muscles to improve core stability.",
        "category": "strength",
        "difficulty": "medium",
        "parameters": {"repetitions": 15, "sets": 4, "duration": 25, "intensity": "medium"},
        "notes": "Maintain proper form to prevent strain",
    },
    {
        "name": "Balance Training",
        "description": "Exercises focused on improving balance and proprioception.",
        "category": "balance",
        "difficulty": "medium",
        "parameters": {"duration": 15, "intensity": "medium"},
        "notes": "Progress from stable to unstable surfaces",
    },
    {
        "name": "Shoulder Mobility",
        "description": "Gentle exercises to improve range of motion in the shoulder joint.",
        "category": "flexibility",
        "difficulty": "easy",
        "parameters": {"repetitions": 10, "sets": 2, "duration": 15, "intensity": "low"},
        "notes": "Avoid movements that cause pain",
    },
    {
        "name": "Cardiovascular Endurance",
        "description": "Low-impact cardio exercises to improve heart health and endurance.",
        "category": "cardio",
        "difficulty": "medium",
        "parameters": {"duration": 30, "intensity": "medium"},
        "notes": "Monitor heart rate during activity",
    },
]

# Demo mode only. Every account shares the same password.
DEMO_PASSWORD = "password123"
DEMO_ACCOUNTS = [
    {"email": "sarah.johnson@physio.com", "name": "Sarah", "surname": "Johnson", "role": "coach"},
    {"email": "michael.chen@physio.com", "name": "Michael", "surname": "Chen", "role": "coach"},
    {"email": "john.smith@client.com", "name": "John", "surname": "Smith", "role": "client"},
    {"email": "admin@physio.com", "name": "Admin", "surname": "", "role": "admin"},
]


def seed_default_exercises(store):
    """Insert the shared exercise library when no defaults exist yet."""
    if any(e.is_default for e in store.list_exercises(None)):
        return 0
    for data in DEFAULT_EXERCISES:
        store.insert_exercise(coach_id=None, **data)
    logger.info("Seeded %d default exercises", len(DEFAULT_EXERCISES))
    return len(DEFAULT_EXERCISES)


def seed_demo_accounts(store):
    """Create the demo coaches, client and admin, and link the client to a patient record."""
    created = 0
    for data in DEMO_ACCOUNTS:
        if store.find_user_by_email(data["email"]) is None:
            create_account(store, password=DEMO_PASSWORD, **data)
            created += 1

    coach = store.find_user_by_email("sarah.johnson@physio.com")
    client = store.find_user_by_email("john.smith@client.com")
    if store.get_patient_for_user(client.id) is None:
        store.insert_patient(
            name="John", surname="Smith", age=45, weight=82.0, height=178.0,
            fitness_level="beginner", limitations=["lower back pain"],
            notes="Desk job, recovering from a lumbar strain",
            coach_id=coach.id, user_id=client.id,
        )
    if created:
        logger.info("Seeded %d demo accounts", created)
    return created
