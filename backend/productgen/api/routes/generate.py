"""Single-product generation endpoints used by the product editor."""

from typing import Any, Literal

from fastapi import APIRouter
from pydantic import BaseModel, Field

from productgen.api.deps import DbSession, Generator
from productgen.runtime import get_registry

router = APIRouter()


class PromptRequest(BaseModel):
    template: str = "product_description"
    context: dict[str, Any] = {}


class GenerateRequest(PromptRequest):
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, ge=1, le=4000)
    output_format: Literal["html", "text", "markdown"] = "html"
    auto_save: bool = False


@router.get("/templates")
async def list_templates() -> list[dict[str, str]]:
    return [
        {"id": t.id, "name": t.name, "description": t.description}
        for t in get_registry().all()
    ]


@router.post("/{product_id}/prompt")
async def preview_prompt(
    db: DbSession, generator: Generator, product_id: int, data: PromptRequest
) -> dict[str, str]:
    """Prompts that would be sent for this product, without calling the model."""
    prompt = await generator.render_prompt(db, product_id, data.template, data.context)
    return {"system_prompt": prompt.system_prompt, "user_prompt": prompt.user_prompt}


@router.post("/{product_id}")
async def generate_content(
    db: DbSession, generator: Generator, product_id: int, data: GenerateRequest
) -> dict:
    return await generator.generate_for_product(
        db,
        product_id,
        data.template,
        context=data.context,
        temperature=data.temperature,
        max_tokens=data.max_tokens,
        output_format=data.output_format,
        auto_save=data.auto_save,
    )
