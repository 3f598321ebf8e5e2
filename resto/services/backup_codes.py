from __future__ import annotations

import hashlib
import logging
import secrets
import string
from datetime import datetime, timezone

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from resto.core.errors import AuthenticationFailed, CodeValidationError, ProviderError
from resto.core.logging import audit_event
from resto.core.settings import settings
from resto.models.backup_code import BackupCode

logger = logging.getLogger(__name__)

BACKUP_CODE_ALPHABET = string.ascii_uppercase + string.digits
BACKUP_CODE_LENGTH = 8  # rendered as two groups: "AB3D-9F2K"
BACKUP_CODE_GROUP_SIZE = 4


def normalize_code(code: str) -> str:
    """Strip separators and whitespace, upper-case the rest."""
    return "".join(code.split()).replace("-", "").upper()


def format_code(raw: str) -> str:
    return f"{raw[:BACKUP_CODE_GROUP_SIZE]}-{raw[BACKUP_CODE_GROUP_SIZE:]}"


def hash_code(code: str) -> str:
    return hashlib.sha256(normalize_code(code).encode("utf-8")).hexdigest()


def _generate_code() -> str:
    raw = "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(BACKUP_CODE_LENGTH))
    return format_code(raw)


def is_low(remaining: int) -> bool:
    return remaining <= settings.backup_codes_low_threshold


async def generate(
    db: AsyncSession,
    *,
    user_id,
    count: int | None = None,
) -> list[str]:
    """Replace the user's code set and return the new plaintext codes.

    This is the only time plaintext is available. Every earlier code for the
    user, used or not, stops working.
    """
    if count is None:
        count = settings.backup_codes_count
    if count < 1:
        raise ValueError("count must be positive")

    plain_codes: list[str] = []
    while len(plain_codes) < count:
        code = _generate_code()
        if code not in plain_codes:
            plain_codes.append(code)

    try:
        await db.execute(delete(BackupCode).where(BackupCode.user_id == user_id))
        for code in plain_codes:
            db.add(BackupCode(user_id=user_id, code_hash=hash_code(code), used=False))
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Backup code generation failed for user_id=%s", user_id)
        raise ProviderError(details={"operation": "backup_codes.generate"}) from exc

    audit_event("backup_codes.generated", user_id=str(user_id), count=count)
    return plain_codes


async def redeem(db: AsyncSession, *, user_id, code: str) -> None:
    """Consume one unused code. Raises AuthenticationFailed if none matches."""
    normalized = normalize_code(code)
    if len(normalized) < BACKUP_CODE_LENGTH:
        raise CodeValidationError("Backup codes are 8 characters long")

    # Conditional UPDATE so two concurrent redemptions cannot both win.
    stmt = (
        update(BackupCode)
        .where(
            BackupCode.user_id == user_id,
            BackupCode.code_hash == hash_code(normalized),
            BackupCode.used.is_(False),
        )
        .values(used=True, used_at=datetime.now(timezone.utc))
        .returning(BackupCode.id)
        .execution_options(synchronize_session=False)
    )
    try:
        result = await db.execute(stmt)
        redeemed_id = result.scalar_one_or_none()
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Backup code redemption failed for user_id=%s", user_id)
        raise ProviderError(details={"operation": "backup_codes.redeem"}) from exc

    if redeemed_id is None:
        audit_event("backup_codes.redeem_rejected", user_id=str(user_id))
        raise AuthenticationFailed("Invalid or already used backup code")

    audit_event("backup_codes.redeemed", user_id=str(user_id), code_id=str(redeemed_id))


async def count_remaining(db: AsyncSession, *, user_id) -> int:
    stmt = (
        select(func.count())
        .select_from(BackupCode)
        .where(BackupCode.user_id == user_id, BackupCode.used.is_(False))
    )
    try:
        result = await db.execute(stmt)
    except SQLAlchemyError as exc:
        raise ProviderError(details={"operation": "backup_codes.count"}) from exc
    return result.scalar_one() or 0


async def delete_for_user(db: AsyncSession, *, user_id) -> int:
    """Delete every code for the user. Safe to call again after a failure."""
    try:
        result = await db.execute(delete(BackupCode).where(BackupCode.user_id == user_id))
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Backup code cleanup failed for user_id=%s", user_id)
        raise ProviderError(details={"operation": "backup_codes.delete"}) from exc
    deleted = result.rowcount or 0
    audit_event("backup_codes.deleted", user_id=str(user_id), count=deleted)
    return deleted
