# datadrive/models/user.py
from __future__ import annotations

import uuid

from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import validates

from ..db import Base


class User(Base):
    __tablename__ = "users"

    id = Column(
        String,
        primary_key=True,
        index=True,
        default=lambda: str(uuid.uuid4()),
    )
    email = Column(String, unique=True, nullable=False, index=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)

    # Roles: "Admin", "User"
    role = Column(String, nullable=False, default="User")

    is_active = Column(Boolean, default=True)
    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    @validates("role")
    def normalize_role(self, key, value: str | None) -> str:
        """
        Normalize role strings so they always have the expected capitalization.
        Only "Admin" sees every dataset; anything else is treated as a plain user.
        """
        if not value:
            return "User"

        mapping = {
            "admin": "Admin",
            "user": "User",
        }
        return mapping.get(value.lower(), value)

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.email
