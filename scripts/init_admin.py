"""
Platform admin bootstrap. Admins provision stock to organizations and may lend
any resource, so the account is never tied to an organization.

  python -m scripts.init_admin
  ADMIN_USER=admin ADMIN_PASSWORD=secret python -m scripts.init_admin

With ADMIN_IF_EMPTY=1 (container start) nothing happens once any user exists,
so a mounted database keeps its passwords.
"""
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import generate_password_hash

from app.config import SYNC_DATABASE_URL, DATA_DIR
from app.database import Base
from app.models import User
from app.models.user import UserRole


def ensure_admin(session: Session, username: str, password: str, if_empty: bool = False) -> str:
    """Creates or resets the admin account. Returns "created", "updated" or "skipped"."""
    if if_empty and session.scalar(select(func.count()).select_from(User)):
        return "skipped"
    user = session.execute(select(User).where(User.username == username)).scalar_one_or_none()
    outcome = "updated"
    if user is None:
        user = User(username=username)
        session.add(user)
        outcome = "created"
    user.password_hash = generate_password_hash(password)
    user.role = UserRole.admin
    user.organization_id = None
    user.is_active = True
    session.commit()
    return outcome


def main():
    username = os.getenv("ADMIN_USER", "admin")
    password = os.getenv("ADMIN_PASSWORD", "admin")
    if_empty = os.getenv("ADMIN_IF_EMPTY", "").lower() in ("1", "true", "yes")
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    engine = create_engine(SYNC_DATABASE_URL, echo=False)
    Base.metadata.create_all(engine)
    with sessionmaker(bind=engine)() as session:
        outcome = ensure_admin(session, username, password, if_empty=if_empty)
    if outcome != "skipped":
        print(f"Admin '{username}' {outcome}.")


if __name__ == "__main__":
    main()
