import uuid

from sqlalchemy import Boolean, Column, DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from resto.db.base import Base


class UserSession(Base):
    """Informational record of a browser session. Revoking it is bookkeeping only."""

    __tablename__ = "user_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    session_token = Column(String(20), nullable=False)
    device_info = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    browser = Column(String(64), nullable=True)
    os = Column(String(64), nullable=True)
    device_type = Column(String(16), nullable=True)
    location = Column(String(255), nullable=True)
    last_active_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    is_current = Column(Boolean, nullable=False, default=False, server_default="false")
    is_revoked = Column(Boolean, nullable=False, default=False, server_default="false")
    revoked_at = Column(DateTime(timezone=True), nullable=True)
