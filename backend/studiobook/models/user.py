# backend/studiobook/models/user.py
"""
User model.

Accounts are provisioned by the external auth provider; this table only
keeps what the booking core needs: contact fields joined into booking views
and the persisted administrator flag.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import Boolean, Column, String
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UtcDateTime


class User(Base):
    __tablename__ = "users"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=False, default="")
    is_admin = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UtcDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    bookings = relationship("Booking", back_populates="user")

    def __repr__(self) -> str:
        return f"<User {self.id}: {self.email} admin={self.is_admin}>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "is_admin": bool(self.is_admin),
            "is_active": bool(self.is_active),
        }
