# refresh_guard/models/refresh_token.py
from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from refresh_guard.core.base import Base


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    # The token's `jti` claim. Random uuid4, never reused.
    id = Column(String(64), primary_key=True)

    owner_id = Column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    issued_at = Column(DateTime(timezone=True), nullable=False)

    # Copied from the signed token's `exp` claim
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    # Tombstone: once set it is never cleared
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    # Successor in the rotation chain (same owner)
    replaced_by_id = Column(
        String(64),
        ForeignKey("refresh_tokens.id", ondelete="SET NULL"),
        nullable=True,
    )

    owner = relationship("User", back_populates="refresh_tokens")
