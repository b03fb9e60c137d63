"""Single-product generation used by the editor sidebar endpoints."""

import html
import logging
import re
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Literal

from sqlalchemy.ext.asyncio import AsyncSession

from productgen.exceptions import ProductNotFound
from productgen.models import Product
from productgen.services.events import ContentGenerated, EventHub
from productgen.services.generation_records import mark_generated
from productgen.services.item_executor import clamp_temperature
from productgen.services.settings_store import get_brand_voice
from productgen.templates import RenderedPrompt, TemplateRegistry

logger = logging.getLogger(__name__)

OutputFormat = Literal["html", "text", "markdown"]

BLOCK_TAG = re.compile(r"<(p|div|ul|ol|h[1-6]|table|blockquote|pre)[\s>]", re.IGNORECASE)
TAG = re.compile(r"<[^>]+>")


def autop(text: str) -> str:
    """Wrap plain paragraphs in <p> tags; text already in block markup is kept."""
    text = text.strip()
    if not text or BLOCK_TAG.search(text):
        return text
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]
    paragraphs = [p.replace("\n", "<br />\n") for p in paragraphs]
    return "\n".join(f"<p>{p}</p>" for p in paragraphs)


def strip_tags(text: str) -> str:
    return html.unescape(TAG.sub("", text)).strip()


def format_content(text: str, output_format: OutputFormat) -> str:
    if output_format == "html":
        return autop(text)
    if output_format == "text":
        return strip_tags(text)
    return text


class ContentGenerator:
    """Generate, format and optionally auto-save content for one product."""

    def __init__(
        self,
        registry: TemplateRegistry,
        generator,
        events: EventHub,
    ):
        self.registry = registry
        self.generator = generator
        self.events = events

    async def render_prompt(
        self,
        db: AsyncSession,
        product_id: int,
        template_id: str,
        context: dict[str, Any] | None = None,
    ) -> RenderedPrompt:
        """Prompts the model would receive, without calling it."""
        self.registry.get(template_id)
        product = await db.get(Product, product_id)
        if not product:
            raise ProductNotFound(f"Product {product_id} not found")

        full_context: dict[str, Any] = {}
        brand_voice = await get_brand_voice(db)
        if brand_voice:
            full_context["brand_voice"] = brand_voice
        full_context.update(context or {})
        return self.registry.render(template_id, product, full_context)

    async def generate_for_product(
        self,
        db: AsyncSession,
        product_id: int,
        template_id: str,
        *,
        context: dict[str, Any] | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        output_format: OutputFormat = "html",
        auto_save: bool = False,
    ) -> dict[str, Any]:
        """
        Generate content for a product.

        Raises TemplateNotFound, ProductNotFound or GenerationError.
        """
        prompt = await self.render_prompt(db, product_id, template_id, context)
        raw = await self.generator.generate(
            prompt.system_prompt,
            prompt.user_prompt,
            temperature=clamp_temperature(temperature),
            max_tokens=max_tokens,
        )
        content = format_content(raw, output_format)

        generated_at = datetime.now(UTC)
        await mark_generated(db, product_id, template_id, generated_at)
        await db.commit()

        if auto_save:
            # SEO output is parsed as JSON, so listeners get the raw text for it
            text = raw if template_id == "product_seo" else content
            await self.events.emit(ContentGenerated(text=text, task_id=template_id, product_id=product_id))

        logger.info(f"Generated {template_id} for product {product_id} ({len(raw)} chars)")
        return {
            "content": content,
            "raw_content": raw,
            "metadata": {
                "template_id": template_id,
                "product_id": product_id,
                "generated_at": generated_at.isoformat(),
                "auto_saved": auto_save,
            },
        }
