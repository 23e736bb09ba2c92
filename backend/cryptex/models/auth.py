"""Auth models: user profiles and revoked tokens."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from cryptex.database import Base


class User(Base):
    """
    User profile.

    Each user owns exactly one AccountSettings row (demo balance, UI flags)
    plus their demo positions, orders and notifications.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    role = Column(String, default="user", nullable=False)  # "user" or "admin" (compared case-insensitively)
    is_active = Column(Boolean, default=True)

    # First-run walkthrough
    walkthrough_dismissed = Column(Boolean, default=False)
    walkthrough_completed = Column(Boolean, default=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    last_login_at = Column(DateTime, nullable=True)

    # Tokens issued before this timestamp are invalid
    tokens_valid_after = Column(DateTime, nullable=True)

    # Relationships
    account_settings = relationship(
        "AccountSettings", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    positions = relationship("DemoPosition", back_populates="user", cascade="all, delete-orphan")
    orders = relationship("DemoOrder", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")


class RevokedToken(Base):
    """JTIs of access tokens revoked by logout."""
    __tablename__ = "revoked_tokens"

    id = Column(Integer, primary_key=True, index=True)
    jti = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expires_at = Column(DateTime, nullable=False)  # Safe to purge after this
    revoked_at = Column(DateTime, default=datetime.utcnow)
