"""Product description template."""

from typing import Any

from productgen.models import Product
from productgen.templates.base import PromptTemplate, humanize

SYSTEM_PROMPT = (
    "You are an expert e-commerce copywriter specializing in product descriptions. "
    "Your task is to create compelling, SEO-friendly product descriptions that are informative, engaging, and persuasive. "
    "Focus on benefits over features, use clear and concise language, and maintain a professional yet approachable tone. "
    "Consider the target audience and write descriptions that resonate with them. "
    "\n\nFORMATTING RULES:\n"
    "- Use HTML tags for formatting: <strong> for emphasis, <em> for italics, <p> for paragraphs\n"
    "- Do NOT use markdown asterisks (*) or underscores (_) for formatting\n"
    "- Use <br> tags for line breaks within paragraphs if needed\n"
    "- Use <ul> and <li> tags for lists, not dashes or asterisks\n"
    "- Do NOT include the product title or author name in the description\n"
    "- Do NOT mention pricing or cost information\n"
    "- Start directly with the description content\n"
    "- Return only the description body, no headers or titles"
)


class ProductDescriptionTemplate(PromptTemplate):
    """Generate a compelling product description based on product data."""

    id = "product_description"
    name = "Product Description"
    description = "Generate a compelling product description based on product data"
    standard_keys = frozenset(
        {"name", "sku", "categories", "tags", "attributes", "description", "short_description", "meta"}
    )

    # Product meta keys forwarded to the prompt as "Additional Information"
    meta_keys: tuple[str, ...] = ("material", "dimensions", "care_instructions")

    def aggregate_product_data(self, product: Product) -> dict[str, Any]:
        data = self.basic_product_data(product)
        data["short_description"] = product.short_description or ""
        data["description"] = product.description or ""
        meta = product.meta or {}
        data["meta"] = {key: meta[key] for key in self.meta_keys if meta.get(key)}
        return data

    def build_system_prompt(self, context: dict[str, Any]) -> str:
        return SYSTEM_PROMPT

    def build_user_prompt(self, data: dict[str, Any], context: dict[str, Any]) -> str:
        prompt = "Generate a product description for the following product:\n\n"
        prompt += "=== PRODUCT DATA ===\n\n"

        if data.get("name"):
            prompt += f"Product Name: {data['name']}\n"
        if data.get("sku"):
            prompt += f"SKU: {data['sku']}\n"
        if data.get("categories"):
            prompt += "Categories: " + ", ".join(data["categories"]) + "\n"
        if data.get("tags"):
            prompt += "Tags: " + ", ".join(data["tags"]) + "\n"

        if data.get("attributes"):
            prompt += "\nAttributes:\n"
            for name, values in data["attributes"].items():
                if isinstance(values, list):
                    prompt += f"- {humanize(name)}: {', '.join(str(v) for v in values)}\n"

        if data.get("description"):
            prompt += f"\nCurrent Description: {data['description']}\n"
            prompt += (
                "(Try to maintain the essence of this description if it exists and is at least "
                "3 sentences. Improve, enhance and append it in a thoughtful way.)\n"
            )

        if data.get("meta"):
            prompt += "\nAdditional Information:\n"
            for key, value in data["meta"].items():
                prompt += f"- {humanize(key)}: {value}\n"

        prompt += self.context_lines(context)
        prompt += self.custom_data_lines(data)

        prompt += "\n=== INSTRUCTIONS ===\n\n"
        prompt += "Please generate a compelling product description that:\n"
        prompt += "1. Highlights key features and benefits\n"
        prompt += "2. Uses persuasive language to encourage purchase\n"
        prompt += "3. Is optimized for search engines\n"
        prompt += "4. Maintains a professional yet engaging tone\n"
        prompt += "5. Is between 150-300 words\n"
        return prompt
