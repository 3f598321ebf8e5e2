import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from resto.db.base import Base


class AuthFactor(Base):
    __tablename__ = "auth_factors"
    __table_args__ = (
        CheckConstraint("status IN ('unverified', 'verified')", name="ck_auth_factors_status"),
        CheckConstraint("factor_type IN ('totp')", name="ck_auth_factors_type"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    factor_type = Column(String(16), nullable=False, default="totp")
    status = Column(String(16), nullable=False, default="unverified")
    friendly_name = Column(String(120), nullable=True)
    secret_encrypted = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    user = relationship("User", back_populates="factors")
    challenges = relationship("AuthChallenge", back_populates="factor", cascade="all, delete-orphan")


class AuthChallenge(Base):
    __tablename__ = "auth_challenges"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    factor_id = Column(UUID(as_uuid=True), ForeignKey("auth_factors.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    factor = relationship("AuthFactor", back_populates="challenges")
