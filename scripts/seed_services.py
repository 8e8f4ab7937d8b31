"""
Seed the service catalog (SEO, Google Ads, LinkedIn Outreach, ...).

Usage:
  python scripts/seed_services.py

Idempotent: services already present (by slug) are left alone.
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from clientflow.config import settings

if settings.database_url.startswith("postgresql"):
    try:
        import psycopg2  # noqa: F401
    except ImportError:
        print("ERROR: PostgreSQL database detected but psycopg2 is not installed.")
        print("Please install it with: pip install -e .[postgres]")
        sys.exit(1)

from clientflow.db import Base, SessionLocal, engine
from clientflow.services.catalog import seed_service_catalog


def seed_services():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        created = seed_service_catalog(db)
        print(f"Service catalog seeded: {created} new service(s).")
    except Exception as e:
        db.rollback()
        print(f"Error seeding services: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_services()
