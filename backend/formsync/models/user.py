from enum import Enum

from sqlalchemy import Column, DateTime, String
from sqlalchemy import Enum as SQLEnum

from .base import BaseModel, utcnow


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


class User(BaseModel):
    """Account resolved by the identity gate. Credentials live elsewhere."""
    __tablename__ = "users"

    email = Column(String(255), unique=True, index=True, nullable=False)
    role = Column(SQLEnum(UserRole, name="user_role"), default=UserRole.USER, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
