# File: construction_backend/init_db.py
import os
import traceback
from datetime import date, timedelta
from decimal import Decimal

from .db import Base, get_engine, session_scope, configure_engine, DEFAULT_DATABASE_URL
from .models import User, Item, Employee, Job

STARTER_CATALOG = [
    ('Concrete pour', 'Ready-mix concrete placed and finished, per cubic yard', Decimal('165.00')),
    ('Drywall hang', 'Hang and screw 1/2" drywall, per sheet', Decimal('38.50')),
    ('Framing labor', 'Carpentry crew, per hour', Decimal('72.00')),
    ('PVC pipe run', 'Schedule 40 PVC supply line, per linear foot', Decimal('9.75')),
    ('Site cleanup', 'Debris haul-off and sweep, per visit', Decimal('250.00')),
]

STARTER_EMPLOYEES = [
    ('Dana Ortiz', 'Foreman', 'dana.ortiz@example.com'),
    ('Lee Park', 'Carpenter', 'lee.park@example.com'),
    ('Sam Reyes', 'Electrician', 'sam.reyes@example.com'),
]


def starter_jobs(today=None):
    today = today or date.today()
    return [
        Job(id='J-101', project='Maple St. Duplex', location='Pocatello', scope='Framing and sheathing',
            shift='Day', start_date=today + timedelta(days=3), foreman='Dana Ortiz', priority='High'),
        Job(id='J-102', project='Riverside Clinic Remodel', location='Idaho Falls', scope='Interior demo and drywall',
            shift='Night', start_date=today + timedelta(days=7), foreman='Dana Ortiz', priority='Medium'),
    ]


def init_database():
    """Create missing tables and seed defaults into empty ones"""
    print("=" * 60)
    print("🔧 INITIALIZING DATABASE SCHEMA & DEFAULT DATA...")
    print("=" * 60)

    try:
        Base.metadata.create_all(bind=get_engine())
        print("✅ Database schema created or verified successfully!")

        with session_scope() as session:
            if session.query(User).count() == 0:
                admin = User(
                    email=os.getenv('ADMIN_EMAIL', 'admin@example.com').lower(),
                    first_name='Admin',
                    last_name='User',
                    role='Manager',
                    is_active=True,
                )
                admin.set_password(os.getenv('ADMIN_PASSWORD', 'change-me-now'))
                session.add(admin)
                print(f"👤 Created default manager {admin.email}")

            if session.query(Item).count() == 0:
                session.add_all([
                    Item(name=name, description=description, default_rate=rate)
                    for name, description, rate in STARTER_CATALOG
                ])
                print(f"📦 Seeded {len(STARTER_CATALOG)} catalog items")

            if session.query(Employee).count() == 0:
                session.add_all([
                    Employee(name=name, role=role, email=email)
                    for name, role, email in STARTER_EMPLOYEES
                ])
                print(f"👷 Seeded {len(STARTER_EMPLOYEES)} employees")

            if session.query(Job).count() == 0:
                jobs = starter_jobs()
                session.add_all(jobs)
                print(f"🏗️  Seeded {len(jobs)} jobs")

        print("\n✅ DATABASE INITIALIZATION COMPLETE!")
        print("=" * 60)
        return True

    except Exception as e:
        print(f"\n❌ Error initializing database: {e}")
        traceback.print_exc()
        return False


if __name__ == "__main__":
    configure_engine(os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL)
    raise SystemExit(0 if init_database() else 1)
