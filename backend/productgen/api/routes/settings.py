"""Settings API endpoints."""

from fastapi import APIRouter
from pydantic import BaseModel, Field

from productgen.api.deps import DbSession
from productgen.services.settings_store import get_brand_voice, set_brand_voice

router = APIRouter()


class BrandVoice(BaseModel):
    """Writing style included in every generation prompt."""
    brand_voice: str = Field(default="", max_length=5000)


@router.get("/brand-voice")
async def read_brand_voice(db: DbSession) -> BrandVoice:
    return BrandVoice(brand_voice=await get_brand_voice(db))


@router.put("/brand-voice")
async def update_brand_voice(db: DbSession, data: BrandVoice) -> BrandVoice:
    await set_brand_voice(db, data.brand_voice)
    await db.commit()
    return BrandVoice(brand_voice=await get_brand_voice(db))
