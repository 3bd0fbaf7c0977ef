#!/usr/bin/env python3
"""
Seed script for the Eventsouq database.
Creates categories, badges, sample accounts, and a moderation queue for local development.

Usage:
    cd backend
    python seed_data.py
"""

import random
from datetime import datetime, timedelta, timezone
from passlib.context import CryptContext
from sqlalchemy import text
from eventsouq.database import Base, SessionLocal
from eventsouq.models import (
    Badge,
    Category,
    Event,
    Profile,
    ProviderApplication,
    Service,
    ServiceCategory,
    SystemSetting,
    User,
    UserRole,
    UserWallet,
)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

CATEGORIES = [
    ("Conferences", "مؤتمرات"),
    ("Workshops", "ورش عمل"),
    ("Sports", "رياضة"),
    ("Culture", "ثقافة"),
    ("Family", "عائلي"),
    ("Entertainment", "ترفيه"),
    ("Exhibitions", "معارض"),
]

SERVICE_CATEGORIES = [
    ("Catering", "ضيافة"),
    ("Photography", "تصوير"),
    ("Sound & Lighting", "صوت وإضاءة"),
    ("Venues", "قاعات"),
    ("Training", "تدريب"),
]

BADGES = [
    {"name": "First Booking", "name_ar": "أول حجز", "icon": "ticket", "rarity": "common",
     "requirement_type": "booking_count", "requirement_value": 1, "points_reward": 10},
    {"name": "Event Regular", "name_ar": "زائر دائم", "icon": "calendar", "rarity": "rare",
     "requirement_type": "booking_count", "requirement_value": 10, "points_reward": 50},
    {"name": "Trainee", "name_ar": "متدرب", "icon": "book", "rarity": "common",
     "requirement_type": "training_count", "requirement_value": 1, "points_reward": 10},
    {"name": "Team Player", "name_ar": "روح الفريق", "icon": "users", "rarity": "common",
     "requirement_type": "group_count", "requirement_value": 3, "points_reward": 20},
    {"name": "Group Founder", "name_ar": "مؤسس مجموعة", "icon": "flag", "rarity": "rare",
     "requirement_type": "group_created", "requirement_value": 1, "points_reward": 25},
    {"name": "Ambassador", "name_ar": "سفير", "icon": "megaphone", "rarity": "epic",
     "requirement_type": "referral_count", "requirement_value": 5, "points_reward": 100},
    {"name": "Shield Member", "name_ar": "عضو الدرع", "icon": "shield", "rarity": "legendary",
     "requirement_type": "is_shield_member", "requirement_value": 1, "points_reward": 200},
]

ACCOUNTS = [
    {"email": "admin@eventsouq.sa", "password": "admin12345", "full_name": "مدير المنصة", "role": UserRole.admin},
    {"email": "organizer@eventsouq.sa", "password": "organizer123", "full_name": "شركة الفعاليات",
     "role": UserRole.organizer},
    {"email": "provider@eventsouq.sa", "password": "provider123", "full_name": "ضيافة الرياض",
     "role": UserRole.provider},
    {"email": "sara@eventsouq.sa", "password": "attendee123", "full_name": "سارة العتيبي", "role": UserRole.attendee},
    {"email": "omar@eventsouq.sa", "password": "attendee123", "full_name": "عمر القحطاني", "role": UserRole.attendee},
    {"email": "lina@eventsouq.sa", "password": "attendee123", "full_name": "Lina Haddad", "role": UserRole.attendee,
     "language": "en"},
]

SAMPLE_EVENTS = [
    ("Riyadh Tech Summit", "قمة الرياض التقنية", "Conferences", 300, 150.0),
    ("Calligraphy Workshop", "ورشة الخط العربي", "Workshops", 25, 80.0),
    ("Family Fun Day", "يوم العائلة", "Family", 200, 0.0),
    ("Jeddah Night Run", "سباق جدة الليلي", "Sports", 500, 50.0),
]

SAMPLE_SERVICES = [
    ("Arabic Coffee Catering", "ضيافة القهوة العربية", "Catering", 1200.0),
    ("Event Photography", "تصوير الفعاليات", "Photography", 900.0),
]

SETTINGS = {
    "maintenance_mode": False,
    "withdrawal_min_amount": 100,
    "support_email": "support@eventsouq.sa",
}


def seed_database():
    """Seed the database with sample data."""
    print("🌱 Starting database seeding...")

    session = SessionLocal()
    try:
        result = session.execute(text("SELECT COUNT(*) FROM users"))
        user_count = result.scalar()

        if user_count > 0:
            print("⚠️  Database already has data. Clearing existing data...")
            for table in reversed(Base.metadata.sorted_tables):
                session.execute(table.delete())
            session.commit()
            print("✅ Existing data cleared")

        print("📌 Creating categories...")
        categories = {}
        for name, name_ar in CATEGORIES:
            category = Category(name=name, name_ar=name_ar)
            session.add(category)
            categories[name] = category
        service_categories = {}
        for name, name_ar in SERVICE_CATEGORIES:
            category = ServiceCategory(name=name, name_ar=name_ar)
            session.add(category)
            service_categories[name] = category
        session.flush()
        print(f"   Created {len(CATEGORIES)} event and {len(SERVICE_CATEGORIES)} service categories")

        print("🏅 Creating badges...")
        for badge_data in BADGES:
            session.add(Badge(**badge_data))
        session.flush()
        print(f"   Created {len(BADGES)} badges")

        print("👥 Creating accounts...")
        users = {}
        for index, account in enumerate(ACCOUNTS):
            user = User(
                email=account["email"],
                password_hash=pwd_context.hash(account["password"]),
                role=account["role"],
            )
            session.add(user)
            session.flush()
            session.add(
                Profile(
                    user_id=user.id,
                    full_name=account["full_name"],
                    language_preference=account.get("language", "ar"),
                    referral_code=f"SEED{index:04d}",
                )
            )
            session.add(UserWallet(user_id=user.id, balance=random.choice([0.0, 250.0, 1000.0])))
            users[account["email"]] = user
        session.flush()
        print(f"   Created {len(ACCOUNTS)} accounts")

        print("📅 Creating pending events and services...")
        now = datetime.now(timezone.utc)
        organizer = users["organizer@eventsouq.sa"]
        provider = users["provider@eventsouq.sa"]
        for title, title_ar, category, seats, price in SAMPLE_EVENTS:
            start_time = (now + timedelta(days=random.randint(3, 60))).replace(minute=0, second=0, microsecond=0)
            session.add(
                Event(
                    title=title,
                    title_ar=title_ar,
                    category_id=categories[category].id,
                    organizer_id=organizer.id,
                    start_time=start_time,
                    end_time=start_time + timedelta(hours=random.randint(2, 5)),
                    location="الرياض",
                    max_attendees=seats,
                    price=price,
                    status="pending",
                )
            )
        for name, name_ar, category, price in SAMPLE_SERVICES:
            session.add(
                Service(
                    name=name,
                    name_ar=name_ar,
                    service_category_id=service_categories[category].id,
                    provider_id=provider.id,
                    price=price,
                    status="pending",
                )
            )
        session.add(
            ProviderApplication(
                user_id=users["omar@eventsouq.sa"].id,
                business_name="مؤسسة عمر للتنظيم",
                description="تنظيم حفلات ومناسبات",
            )
        )
        session.flush()
        print(f"   Created {len(SAMPLE_EVENTS)} events, {len(SAMPLE_SERVICES)} services, 1 provider application")

        print("⚙️  Creating system settings...")
        for key, value in SETTINGS.items():
            session.add(SystemSetting(key=key, value=value))

        session.commit()

        print("\n✅ Database seeding completed successfully!")
        print("\n📋 Test accounts:")
        for account in ACCOUNTS:
            print(f"   - {account['role'].value}: {account['email']} / {account['password']}")

    except Exception as e:
        session.rollback()
        print(f"\n❌ Error during seeding: {e}")
        raise
    finally:
        session.close()


if __name__ == "__main__":
    seed_database()
