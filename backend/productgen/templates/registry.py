"""Template registry - explicit lookup of prompt templates by task id."""

import logging
from typing import Any

from productgen.exceptions import TemplateNotFound
from productgen.models import Product
from productgen.templates.base import PromptTemplate, RenderedPrompt

logger = logging.getLogger(__name__)


class TemplateRegistry:
    """Maps task ids to prompt templates.

    Built once at startup and handed to the planner-facing services and the
    item executor.
    """

    def __init__(self, templates: list[PromptTemplate] | None = None):
        self._templates: dict[str, PromptTemplate] = {}
        for template in templates or []:
            self.register(template)

    def register(self, template: PromptTemplate) -> bool:
        """Register a template. Returns False if the id is already taken."""
        if template.id in self._templates:
            return False
        self._templates[template.id] = template
        return True

    def unregister(self, template_id: str) -> bool:
        return self._templates.pop(template_id, None) is not None

    def is_registered(self, template_id: str) -> bool:
        return template_id in self._templates

    def get(self, template_id: str) -> PromptTemplate:
        """Get a template. Raises TemplateNotFound if missing."""
        try:
            return self._templates[template_id]
        except KeyError:
            raise TemplateNotFound(f'Template "{template_id}" not found.') from None

    def all(self) -> list[PromptTemplate]:
        return list(self._templates.values())

    def choices(self) -> dict[str, str]:
        """Template id -> display name, for select fields."""
        return {tid: template.name for tid, template in self._templates.items()}

    def render(
        self,
        template_id: str,
        product: Product,
        context: dict[str, Any] | None = None,
    ) -> RenderedPrompt:
        """Render prompts for a product with the given template."""
        prompt = self.get(template_id).render(product, context)
        logger.debug(
            f"Prompt for template {template_id}, product #{product.id} ({product.name}): "
            f"system={len(prompt.system_prompt)} chars, user={len(prompt.user_prompt)} chars\n"
            f"SYSTEM:\n{prompt.system_prompt}\nUSER:\n{prompt.user_prompt}"
        )
        return prompt


def build_default_registry() -> TemplateRegistry:
    """Registry with the built-in description, short description and SEO templates."""
    from productgen.templates.description import ProductDescriptionTemplate
    from productgen.templates.seo import ProductSEOTemplate
    from productgen.templates.short_description import ProductShortDescriptionTemplate

    return TemplateRegistry([
        ProductDescriptionTemplate(),
        ProductShortDescriptionTemplate(),
        ProductSEOTemplate(),
    ])
