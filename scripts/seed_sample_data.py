"""
Sample data for local runs: two organizations, a coordinator and volunteers for each,
bulk stock and serialized equipment. Resources start unowned; provision them through
the API so the custody chain starts with "Allocated to Organization".
Run from project root: python -m scripts.seed_sample_data
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from werkzeug.security import generate_password_hash

from app.config import SYNC_DATABASE_URL, DATA_DIR
from app.database import Base
from app.models import Organization, Resource, User
from app.models.user import UserRole

ORGANIZATIONS = [
    {"name": "Riverside Food Bank", "short_info": "Weekly food distribution, warehouse on Mill Street."},
    {"name": "Northside Cleanup Crew", "short_info": "Park and river cleanups, monthly."},
]

RESOURCES = [
    {"name": "Safety vest", "category": "Safety", "quantity_total": 40, "quantity_available": 40},
    {"name": "Work gloves (pair)", "category": "Safety", "quantity_total": 60, "quantity_available": 60},
    {"name": "First aid kit", "category": "Medical", "quantity_total": 10, "quantity_available": 10},
    {"name": "Handheld radio", "category": "Communication", "quantity_total": 1, "quantity_available": 1, "serial_number": "RAD-0001"},
    {"name": "Handheld radio", "category": "Communication", "quantity_total": 1, "quantity_available": 1, "serial_number": "RAD-0002"},
    {"name": "Cargo van key", "category": "Vehicle", "quantity_total": 1, "quantity_available": 1, "serial_number": "VAN-KEY-01"},
    {"name": "Flyers (box)", "category": "Print", "quantity_total": 20, "quantity_available": 20, "is_returnable": False},
]

DEFAULT_PASSWORD = "volunteer"


def _user(session, username: str, role: UserRole, organization_id: int | None) -> None:
    if session.execute(select(User).where(User.username == username)).scalar_one_or_none():
        return
    session.add(User(
        username=username,
        password_hash=generate_password_hash(DEFAULT_PASSWORD),
        role=role,
        organization_id=organization_id,
    ))


def main():
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    engine = create_engine(SYNC_DATABASE_URL, echo=False)
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)

    with Session() as session:
        for i, data in enumerate(ORGANIZATIONS, 1):
            org = session.execute(select(Organization).where(Organization.name == data["name"])).scalar_one_or_none()
            if not org:
                org = Organization(**data)
                session.add(org)
                session.flush()
            _user(session, f"coordinator{i}", UserRole.coordinator, org.id)
            for j in (1, 2):
                _user(session, f"volunteer{i}{j}", UserRole.volunteer, org.id)

        for data in RESOURCES:
            serial = data.get("serial_number")
            if serial and session.execute(select(Resource).where(Resource.serial_number == serial)).scalar_one_or_none():
                continue
            session.add(Resource(**data))
        session.commit()
    print(f"Seeded {len(ORGANIZATIONS)} organizations and {len(RESOURCES)} resources (password '{DEFAULT_PASSWORD}').")


if __name__ == "__main__":
    main()
