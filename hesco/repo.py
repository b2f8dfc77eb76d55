from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from hesco.core.config import settings
from hesco.core.time import utcnow
from hesco.db.models import AppSetting, User
from hesco.services.referrals.service import referral_service

log = logging.getLogger(__name__)

MPESA_PHONE_KEY = "mpesa_phone_number"


async def get_app_setting(session: AsyncSession, key: str, *, default: str | None = None) -> str | None:
    row = await session.get(AppSetting, key)
    if not row or row.value is None:
        return default
    return row.value


async def set_app_setting(session: AsyncSession, key: str, value: str) -> None:
    row = await session.get(AppSetting, key)
    if not row:
        row = AppSetting(key=key)
        session.add(row)
    row.value = value
    row.touch()
    await session.flush()


async def get_mpesa_phone_number(session: AsyncSession) -> str:
    """Runtime-tunable payee number. Falls back to static settings."""
    return await get_app_setting(session, MPESA_PHONE_KEY, default=settings.mpesa_phone_number) or settings.mpesa_phone_number


async def ensure_user(session: AsyncSession, tg_id: int, *, phone: str | None = None) -> User:
    """Ensures the User row exists and carries a referral code."""
    user = await session.get(User, tg_id)
    if not user:
        user = User(tg_id=tg_id, phone=(phone or None), created_at=utcnow())
        session.add(user)
        await session.flush()
    elif phone is not None and user.phone != phone:
        user.phone = phone
        await session.flush()

    await referral_service.ensure_ref_code(session, tg_id)
    return user
