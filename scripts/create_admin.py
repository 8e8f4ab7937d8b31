"""
Create (or promote) an admin account.

Usage:
    python scripts/create_admin.py admin@agency.io "Ada Admin" [--password S3cret!]

Without --password a random one is generated and printed once.
"""
import sys
import os
import argparse
import secrets

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from dotenv import load_dotenv

load_dotenv()

from clientflow.db import Base, SessionLocal, engine
from clientflow.models.models import AuthUser, Profile
from clientflow.auth.security import get_password_hash
from clientflow.services.catalog import seed_service_catalog


def create_admin(email: str, full_name: str, password: str = None) -> str:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    email = email.strip().lower()
    generated = password is None
    password = password or secrets.token_urlsafe(12)
    try:
        seed_service_catalog(db)
        user = db.query(AuthUser).filter(AuthUser.email == email).first()
        if user:
            user.password_hash = get_password_hash(password)
            user.is_active = True
        else:
            user = AuthUser(email=email, password_hash=get_password_hash(password), user_metadata={"full_name": full_name})
            db.add(user)
            db.flush()

        profile = db.query(Profile).filter(Profile.id == user.id).first()
        if profile:
            profile.role = "admin"
            profile.status = "active"
            profile.deleted_at = None
        else:
            db.add(Profile(id=user.id, email=email, full_name=full_name, role="admin", status="active", skills=[]))
        db.commit()
        print(f"Admin ready: {email}")
        if generated:
            print(f"Generated password: {password}")
        return str(user.id)
    except Exception as e:
        db.rollback()
        print(f"Error creating admin: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create or promote an admin account")
    parser.add_argument("email")
    parser.add_argument("full_name")
    parser.add_argument("--password", default=None)
    args = parser.parse_args()
    create_admin(args.email, args.full_name, args.password)
