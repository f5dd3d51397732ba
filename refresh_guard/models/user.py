# refresh_guard/models/user.py
import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, String, func, true
from sqlalchemy.orm import relationship

from refresh_guard.core.base import Base

DEFAULT_ROLES = ["EMPLOYEE"]


def _new_user_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=_new_user_id)

    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)

    # Role names embedded in access tokens (SUPER_ADMIN, ADMIN, HR, MANAGER, EMPLOYEE)
    roles = Column(JSON, nullable=False, default=lambda: list(DEFAULT_ROLES))

    is_active = Column(Boolean, nullable=False, default=True, server_default=true())

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    # user -> refresh tokens
    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="owner",
        cascade="all, delete-orphan",
    )
