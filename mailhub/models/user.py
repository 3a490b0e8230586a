"""
User model
Only the contact fields the email pipeline reads; accounts are owned by the host app
"""

from sqlalchemy import Column, String

from .base import Base, TimestampedModel, UUIDModel, ReprModel

class User(Base, TimestampedModel, UUIDModel, ReprModel):
    """Registered platform user"""

    __tablename__ = "users"

    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=True)
