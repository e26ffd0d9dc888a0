"""
Create (or promote) a staff user with the admin role.

Usage:
    python scripts/create_admin.py --username admin --email admin@example.com --password secret [--name "Admin"]
"""
import sys
import os
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from sqlalchemy.orm import Session
from catalog_hub.db import Base, SessionLocal, engine
from catalog_hub.auth.security import get_password_hash
from catalog_hub.models.models import User, Role


def find_admin_role(db: Session) -> Role:
    """Find or create admin role"""
    admin_role = db.query(Role).filter(Role.name == "admin").first()
    if not admin_role:
        admin_role = Role(name="admin", description="Administrator")
        db.add(admin_role)
        db.commit()
        db.refresh(admin_role)
    return admin_role


def create_admin(db: Session, username: str, email: str, password: str, name: str = None) -> User:
    admin_role = find_admin_role(db)
    user = db.query(User).filter((User.username == username) | (User.email == email)).first()
    if user is None:
        user = User(username=username, email=email, name=name, password_hash=get_password_hash(password))
        db.add(user)
        print(f"[CREATE] {username} ({email})")
    else:
        user.password_hash = get_password_hash(password)
        print(f"[UPDATE] {user.username} ({user.email})")
    if admin_role not in user.roles:
        user.roles.append(admin_role)
    user.is_active = True
    db.commit()
    db.refresh(user)
    return user


def main():
    parser = argparse.ArgumentParser(description="Create or promote an admin user")
    parser.add_argument("--username", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--name", default=None)
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        create_admin(db, args.username, args.email, args.password, args.name)
    finally:
        db.close()


if __name__ == "__main__":
    main()
