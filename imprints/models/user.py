# imprints/models/user.py
# User model: email, hashed_password, role, blacklisted.
import enum
from datetime import datetime

from sqlalchemy import Column, String, Boolean, DateTime, Enum

from imprints.db.base import Base, new_id


class RoleEnum(str, enum.Enum):
    customer = "customer"
    admin = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=True)
    name = Column(String(255), nullable=True)
    role = Column(Enum(RoleEnum), default=RoleEnum.customer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    blacklisted = Column(Boolean, default=False)
