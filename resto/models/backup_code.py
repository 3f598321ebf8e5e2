import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, String, func
from sqlalchemy.dialects.postgresql import UUID

from resto.db.base import Base


class BackupCode(Base):
    """Hashed single-use recovery code. The plaintext is never stored."""

    __tablename__ = "backup_codes"
    __table_args__ = (Index("ix_backup_codes_user_hash", "user_id", "code_hash"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # No FK: with the hosted provider the owning account lives outside this database.
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    code_hash = Column(String(64), nullable=False)
    used = Column(Boolean, nullable=False, default=False, server_default="false")
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
