# app/db/init_db.py
# Seed initial data into the database
# Run once after migrations: python -m app.db.init_db
#
# Creates:
#   1. Admin user (from env vars or defaults)
#   2. Pricing plans (Flexible, Regular, Longterm)
#   3. Subject catalogue

import os

from dotenv import load_dotenv

load_dotenv()

import app.db.base  # noqa: F401, E402
from app.core.security import hash_password  # noqa: E402
from app.db.session import SessionLocal  # noqa: E402
from app.models.subject import Subject  # noqa: E402
from app.models.subscription import PricingPlan, SubscriptionTier  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402

DEFAULT_SUBJECTS = [
    "Mathematics",
    "German",
    "English",
    "Physics",
    "Chemistry",
    "Biology",
    "French",
    "Computer Science",
]

DEFAULT_PLANS = [
    {
        "tier": SubscriptionTier.FLEXIBLE,
        "name": "Flexible",
        "price_per_hour": 30.0,
        "commitment_months": 0,
        "minimum_hours": 0,
        "description": "Pay per session. No commitment.",
        "inclusions": ["Book sessions any time", "Cancel any time"],
        "sort_order": 1,
    },
    {
        "tier": SubscriptionTier.REGULAR,
        "name": "Regular",
        "price_per_hour": 28.0,
        "commitment_months": 1,
        "minimum_hours": 4,
        "description": "One month, at least 4 hours paid upfront.",
        "inclusions": ["Lower hourly price", "Homework support"],
        "sort_order": 2,
    },
    {
        "tier": SubscriptionTier.LONG_TERM,
        "name": "Longterm",
        "price_per_hour": 25.0,
        "commitment_months": 3,
        "minimum_hours": 4,
        "description": "Three months, at least 4 hours paid upfront.",
        "inclusions": ["Best hourly price", "Homework support", "Exam preparation"],
        "sort_order": 3,
    },
]


def seed_admin(db) -> None:
    """Create the admin user if it doesn't exist."""
    admin_email = os.getenv("ADMIN_EMAIL", "admin@lernhub.de")
    admin_password = os.getenv("ADMIN_PASSWORD", "LernHub@Admin123")
    admin_name = os.getenv("ADMIN_NAME", "LernHub Admin")

    if db.query(User).filter(User.email == admin_email).first():
        print(f"  Admin already exists: {admin_email}")
        return

    db.add(User(
        email=admin_email,
        hashed_password=hash_password(admin_password),
        full_name=admin_name,
        role=UserRole.ADMIN,
        is_active=True,
    ))
    db.flush()
    print(f"  Admin created: {admin_email}")


def seed_plans(db) -> None:
    for plan_data in DEFAULT_PLANS:
        if db.query(PricingPlan).filter(PricingPlan.tier == plan_data["tier"]).first():
            print(f"  Plan already exists: {plan_data['name']}")
            continue
        db.add(PricingPlan(**plan_data))
        print(f"  Plan created: {plan_data['name']} (EUR {plan_data['price_per_hour']:.2f}/h)")


def seed_subjects(db) -> None:
    existing = {name for (name,) in db.query(Subject.name).all()}
    for name in DEFAULT_SUBJECTS:
        if name not in existing:
            db.add(Subject(name=name, is_active=True))
            print(f"  Subject created: {name}")


def init_db() -> None:
    print("Seeding database...")
    db = SessionLocal()
    try:
        print("\n[1/3] Admin user")
        seed_admin(db)

        print("\n[2/3] Pricing plans")
        seed_plans(db)

        print("\n[3/3] Subjects")
        seed_subjects(db)

        db.commit()
        print("\nDone. Database seeded successfully.")
    except Exception as e:
        db.rollback()
        print(f"\nERROR: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    init_db()
