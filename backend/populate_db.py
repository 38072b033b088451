import os
import sys

# Add 'backend' folder to Python path
sys.path.append(os.path.abspath(os.path.dirname(__file__)))

from config import settings
from database import SessionLocal, init_db
from models.project import Project
from models.users import User, UserRole
from services.ledger import OrderLedger
from utils.tokenJWT import create_access_token

# Configuration
SEED_USERS = [
    {"email": "owner@example.com", "role": UserRole.OWNER.value, "first_name": "Olivia", "last_name": "Owner"},
    {"email": "vendor@example.com", "role": UserRole.VENDOR.value, "company_name": "Buildmart Supplies"},
    {"email": "client@example.com", "role": UserRole.CLIENT.value, "first_name": "Chris", "last_name": "Client"},
]
SEED_ITEMS = [
    {"name": "Cement (OPC 53)", "quantity": 200, "unit": "bag", "estimated_unit_price": 190.0},
    {"name": "TMT bar 12mm", "quantity": 1.5, "unit": "tonne", "estimated_unit_price": 16000.0},
]
# End Configuration


def get_or_create_user(session, data: dict) -> User:
    user = session.query(User).filter(User.email == data["email"]).first()
    if user is None:
        user = User(**data)
        session.add(user)
        session.commit()
    return user


def seed():
    """Creates demo users, a project with an assigned vendor and one sent order."""
    init_db()
    session = SessionLocal()
    try:
        owner, vendor, client = (get_or_create_user(session, data) for data in SEED_USERS)

        project = session.query(Project).filter(Project.title == "Riverside Villa").first()
        if project is None:
            project = Project(title="Riverside Villa", client_id=client.id)
            project.vendors.append(vendor)
            session.add(project)
            session.commit()
            print(f"Created project #{project.id}")

        ledger = OrderLedger(session)
        order = ledger.create_order(
            owner,
            title="Foundation materials",
            description="Cement and steel for the foundation pour",
            project_id=project.id,
            vendor_id=vendor.id,
            items=SEED_ITEMS,
        )
        ledger.send_order(owner, order.id)
        print(f"Created and sent order {order.order_number}")

        for user in (owner, vendor, client):
            print(f"{user.role:>7} {user.email}: {create_access_token({'sub': user.email})}")
        print(f"Start the API with: procurement-api (serves on {settings.HOST}:{settings.PORT})")
    finally:
        session.close()


if __name__ == "__main__":
    seed()
