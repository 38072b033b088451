# backend/models/users.py
import enum
from sqlalchemy import Column, Integer, String
from database import Base

# Roles recognised by the negotiation core; owner and admin act on the buyer side
class UserRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    VENDOR = "vendor"
    EMPLOYEE = "employee"
    CLIENT = "client"

ADMIN_ROLES = {UserRole.OWNER.value, UserRole.ADMIN.value}

# Represents an authenticated party; credentials live with the auth provider
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    role = Column(String, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    company_name = Column(String, nullable=True)

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() in ADMIN_ROLES

    @property
    def is_vendor(self) -> bool:
        return (self.role or "").lower() == UserRole.VENDOR.value
