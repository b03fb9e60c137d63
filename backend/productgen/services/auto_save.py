"""Writes generated text back onto the product when auto-save is on."""

import json
import logging
from collections.abc import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from productgen.models import Product
from productgen.services.events import ContentGenerated, EventHub

logger = logging.getLogger(__name__)

FIELD_FOR_TASK = {
    "product_description": "description",
    "product_short_description": "short_description",
}

# JSON key in the SEO response -> product meta key
SEO_META_KEYS = {
    "meta_title": "seo_title",
    "meta_description": "seo_description",
    "focus_keyword": "focus_keyword",
}


def parse_json_response(text: str) -> dict | None:
    """Parse a JSON object out of a model response, ignoring code fences."""
    content = text.strip()
    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end == -1:
        return None
    try:
        data = json.loads(content[start:end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class AutoSaveHandler:
    """Listener for ``ContentGenerated`` events."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self.session_factory = session_factory

    def register(self, hub: EventHub) -> None:
        hub.on(ContentGenerated, self.handle)

    async def handle(self, event: ContentGenerated) -> None:
        if event.task_id not in FIELD_FOR_TASK and event.task_id != "product_seo":
            return

        async with self.session_factory() as db:
            product = await db.get(Product, event.product_id)
            if not product:
                logger.warning(f"Auto-save skipped: product {event.product_id} not found")
                return

            if event.task_id == "product_seo":
                data = parse_json_response(event.text)
                if data is None:
                    logger.warning(f"Auto-save skipped: SEO output for product {product.id} is not JSON")
                    return
                meta = dict(product.meta or {})
                for source, target in SEO_META_KEYS.items():
                    if data.get(source):
                        meta[target] = str(data[source])
                product.meta = meta
            else:
                setattr(product, FIELD_FOR_TASK[event.task_id], event.text)

            await db.commit()
            logger.info(f"Auto-saved {event.task_id} for product {product.id}")
