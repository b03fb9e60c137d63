"""SEO-optimized content template."""

from typing import Any

from productgen.models import Product
from productgen.templates.base import PromptTemplate, humanize

SYSTEM_PROMPT = (
    "You are an expert SEO copywriter and e-commerce specialist. "
    "Your task is to create product content that is highly optimized for search engines while remaining engaging for human readers. "
    "Focus on:\n"
    "1. Natural keyword integration (avoid keyword stuffing)\n"
    "2. Semantic SEO and related terms\n"
    "3. Search intent matching\n"
    "4. Structured, scannable content with headings\n"
    "5. Clear value propositions and benefits\n"
    "6. Trust signals and social proof\n"
    "7. Call-to-action optimization\n\n"
    "Write content that satisfies both search engine algorithms and user needs."
)

OUTPUT_FORMAT = """
Return ONLY a JSON object with these fields:
- meta_title: page title, at most 60 characters
- meta_description: meta description, at most 155 characters
- focus_keyword: the primary keyword used
- content: the SEO body content as HTML"""


class ProductSEOTemplate(PromptTemplate):
    """Generate SEO-optimized product content with keywords and meta data."""

    id = "product_seo"
    name = "SEO-Optimized Content"
    description = "Generate SEO-optimized product content with keywords and structured data"
    standard_keys = frozenset(
        {
            "name", "sku", "categories", "tags", "attributes", "description",
            "short_description", "seo", "competitors", "target_keywords", "reviews",
        }
    )

    def aggregate_product_data(self, product: Product) -> dict[str, Any]:
        data = self.basic_product_data(product)
        meta = product.meta or {}
        data["description"] = product.description or ""
        data["short_description"] = product.short_description or ""
        data["seo"] = {
            "meta_title": meta.get("seo_title", ""),
            "meta_description": meta.get("seo_description", ""),
            "focus_keyword": meta.get("focus_keyword", ""),
        }
        if meta.get("competitor_products"):
            data["competitors"] = meta["competitor_products"]
        if meta.get("target_keywords"):
            data["target_keywords"] = meta["target_keywords"]
        if product.review_count:
            data["reviews"] = {
                "average": product.average_rating,
                "count": product.review_count,
                "top_themes": meta.get("review_themes") or [],
            }
        return data

    def build_system_prompt(self, context: dict[str, Any]) -> str:
        return SYSTEM_PROMPT

    def build_user_prompt(self, data: dict[str, Any], context: dict[str, Any]) -> str:
        prompt = "Create SEO-optimized product content for:\n\n"

        if data.get("name"):
            prompt += f"Product Name: {data['name']}\n"
        if data.get("categories"):
            prompt += "Categories: " + ", ".join(data["categories"]) + "\n"

        focus_keyword = context.get("focus_keyword") or data["seo"].get("focus_keyword")
        if focus_keyword:
            prompt += f"Primary Keyword: {focus_keyword}\n"

        keywords = data.get("target_keywords")
        if keywords:
            if isinstance(keywords, list):
                keywords = ", ".join(keywords)
            prompt += f"Target Keywords: {keywords}\n"

        if context.get("search_intent"):
            prompt += f"Search Intent: {context['search_intent']}\n"

        if data.get("attributes"):
            prompt += "\nProduct Attributes:\n"
            for name, values in data["attributes"].items():
                if isinstance(values, list) and values:
                    prompt += f"- {humanize(name)}: {', '.join(str(v) for v in values)}\n"

        if data.get("description"):
            prompt += f"\nCurrent Description (for reference):\n{data['description']}\n"

        reviews = data.get("reviews")
        if reviews:
            prompt += "\nReview Summary:\n"
            prompt += f"- Average Rating: {reviews['average']}/5\n"
            prompt += f"- Total Reviews: {reviews['count']}\n"
            if reviews.get("top_themes"):
                prompt += "- Top Review Themes: " + ", ".join(reviews["top_themes"]) + "\n"

        if data.get("competitors"):
            prompt += f"\nCompetitor Context: {data['competitors']}\n"

        prompt += self.context_lines(
            context, exclude={"focus_keyword", "search_intent", "include_schema"}
        )

        prompt += "\nContent Requirements:\n"
        prompt += "1. Length: 300-500 words (optimal for SEO)\n"
        prompt += "2. Include the focus keyword naturally 2-3 times\n"
        prompt += "3. Use semantic variations and related terms\n"
        prompt += "4. Structure with H2/H3 headings (use HTML tags)\n"
        prompt += "5. Include bullet points for key features\n"
        prompt += "6. Add a compelling call-to-action\n"
        prompt += "7. Incorporate trust signals (warranty, quality, reviews)\n"
        prompt += "8. Write for readability (short paragraphs, clear language)\n"
        prompt += "9. Match the search intent\n"
        prompt += "10. Front-load important information\n"

        if context.get("include_schema"):
            prompt += "\nAlso generate JSON-LD schema markup for the product in a \"schema\" field."

        prompt += OUTPUT_FORMAT
        return prompt
