"""Product short description template."""

from typing import Any

from productgen.models import Product
from productgen.templates.base import PromptTemplate

DEFAULT_WORD_LIMIT = 50

SYSTEM_PROMPT = (
    "You are an expert e-commerce copywriter specializing in creating concise, impactful product summaries. "
    "Your task is to create short descriptions that quickly capture attention and communicate the most important product benefits. "
    "Use clear, punchy language and focus on what makes the product unique or valuable to customers. "
    "\n\nFORMATTING RULES:\n"
    "- Use HTML tags for formatting: <strong> for emphasis, <em> for italics\n"
    "- Do NOT use markdown asterisks (*) or underscores (_) for formatting\n"
    "- If using a list, use <ul> and <li> tags, not dashes or asterisks\n"
    "- Do NOT include the product title or author name in the description\n"
    "- Do NOT mention pricing or cost information\n"
    "- Start directly with the description content\n"
    "- Return only the description text, no headers or titles\n"
    "- Keep it concise and avoid unnecessary line breaks"
)


class ProductShortDescriptionTemplate(PromptTemplate):
    id = "product_short_description"
    name = "Product Short Description"
    description = "Generate a concise product short description"
    standard_keys = frozenset(
        {"name", "sku", "categories", "tags", "attributes", "description", "short_description", "selling_points"}
    )

    def aggregate_product_data(self, product: Product) -> dict[str, Any]:
        data = self.basic_product_data(product)
        data["short_description"] = product.short_description or ""
        data["description"] = product.description or ""
        selling_points = (product.meta or {}).get("selling_points")
        if selling_points:
            data["selling_points"] = selling_points
        return data

    def build_system_prompt(self, context: dict[str, Any]) -> str:
        return SYSTEM_PROMPT

    def build_user_prompt(self, data: dict[str, Any], context: dict[str, Any]) -> str:
        prompt = "Generate a short product description for the following product:\n\n"
        prompt += "=== PRODUCT DATA ===\n\n"

        if data.get("name"):
            prompt += f"Product: {data['name']}\n"
        if data.get("categories"):
            prompt += "Category: " + ", ".join(data["categories"]) + "\n"
        if data.get("tags"):
            prompt += "Tags: " + ", ".join(data["tags"]) + "\n"
        if data.get("description"):
            prompt += f"\nFull Description:\n{data['description']}\n"

        selling_points = data.get("selling_points")
        if selling_points:
            prompt += "\nKey Selling Points:\n"
            if isinstance(selling_points, list):
                prompt += "".join(f"- {point}\n" for point in selling_points)
            else:
                prompt += f"{selling_points}\n"

        # word_limit drives the instructions below
        prompt += self.context_lines(context, exclude={"word_limit"})
        prompt += self.custom_data_lines(data)

        word_limit = context.get("word_limit") or DEFAULT_WORD_LIMIT

        prompt += "\n=== INSTRUCTIONS ===\n\n"
        prompt += "Create a compelling short description that:\n"
        prompt += f"1. Is no more than {word_limit} words\n"
        prompt += "2. Highlights the most important benefit or feature\n"
        prompt += "3. Creates urgency or desire\n"
        prompt += "4. Uses active, engaging language\n"
        return prompt
