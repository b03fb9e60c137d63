"""Store-wide settings persisted as JSON-encoded key-value rows."""

import json
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from productgen.models import BRAND_VOICE_KEY, Setting


async def get_setting(db: AsyncSession, key: str, default: Any = None) -> Any:
    result = await db.execute(select(Setting).where(Setting.key == key))
    setting = result.scalar_one_or_none()
    if setting is None:
        return default
    return json.loads(setting.value)


async def set_setting(db: AsyncSession, key: str, value: Any) -> None:
    """Create or replace a setting. Caller commits."""
    result = await db.execute(select(Setting).where(Setting.key == key))
    setting = result.scalar_one_or_none()
    encoded = json.dumps(value)
    if setting:
        setting.value = encoded
    else:
        db.add(Setting(key=key, value=encoded))
    await db.flush()


async def get_brand_voice(db: AsyncSession) -> str:
    """Brand voice text injected into every template context."""
    return await get_setting(db, BRAND_VOICE_KEY, "") or ""


async def set_brand_voice(db: AsyncSession, text: str) -> None:
    await set_setting(db, BRAND_VOICE_KEY, text.strip())
