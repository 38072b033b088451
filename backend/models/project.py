# backend/models/project.py
from sqlalchemy import Column, Integer, String, ForeignKey, Table
from sqlalchemy.orm import relationship
from database import Base

# Vendors assigned to a project; orders may only be raised against these
project_vendors = Table(
    "project_vendors",
    Base.metadata,
    Column("project_id", Integer, ForeignKey("projects.id"), primary_key=True),
    Column("vendor_id", Integer, ForeignKey("users.id"), primary_key=True),
)

# Construction project that purchase orders are raised for
class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    client = relationship("User", foreign_keys=[client_id])
    vendors = relationship("User", secondary=project_vendors)
