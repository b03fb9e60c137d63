"""Base class for AI prompt templates."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from productgen.models import Product


@dataclass
class RenderedPrompt:
    """System and user prompt for one product, plus the data behind them."""
    system_prompt: str
    user_prompt: str
    product_data: dict[str, Any] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)


def humanize(key: str) -> str:
    """'target_audience' -> 'Target audience'."""
    label = key.replace("_", " ")
    return label[:1].upper() + label[1:]


def is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


class PromptTemplate(ABC):
    """
    A named content-generation task.

    Templates are stateless: the product and context are passed to
    ``render`` on every call, so one instance can serve concurrent workers.
    """

    id: str = ""
    name: str = ""
    description: str = ""

    # Keys rendered explicitly by the user prompt; anything else in the
    # aggregated data is listed under "Custom Data".
    standard_keys: frozenset[str] = frozenset()

    def render(self, product: Product, context: dict[str, Any] | None = None) -> RenderedPrompt:
        """Build the prompts for a product."""
        context = dict(context or {})
        data = self.aggregate_product_data(product)
        return RenderedPrompt(
            system_prompt=self.build_system_prompt(context),
            user_prompt=self.build_user_prompt(data, context),
            product_data=data,
            context=context,
        )

    @abstractmethod
    def aggregate_product_data(self, product: Product) -> dict[str, Any]:
        """Collect the product data this template needs."""

    @abstractmethod
    def build_system_prompt(self, context: dict[str, Any]) -> str:
        """System instructions for the model."""

    @abstractmethod
    def build_user_prompt(self, data: dict[str, Any], context: dict[str, Any]) -> str:
        """User request for the model."""

    def basic_product_data(self, product: Product) -> dict[str, Any]:
        """Common product fields shared by all templates."""
        return {
            "id": product.id,
            "name": product.name,
            "sku": product.sku,
            "type": product.product_type,
            "price": product.price,
            "regular_price": product.regular_price,
            "sale_price": product.sale_price,
            "categories": list(product.categories or []),
            "tags": list(product.tags or []),
            "attributes": dict(product.attributes or {}),
        }

    def context_lines(self, context: dict[str, Any], exclude: set[str] | None = None) -> str:
        """Render scalar context values as an 'Additional Context' block."""
        exclude = exclude or set()
        lines = [
            f"- {humanize(key)}: {value}\n"
            for key, value in context.items()
            if key not in exclude and is_scalar(value) and value != ""
        ]
        if not lines:
            return ""
        return "\nAdditional Context:\n" + "".join(lines)

    def custom_data_lines(self, data: dict[str, Any]) -> str:
        """Render data outside ``standard_keys`` as a 'Custom Data' block."""
        # id/type/prices are internal and never shown to the model
        hidden = self.standard_keys | {"id", "type", "price", "regular_price", "sale_price"}
        lines = []
        for key, value in data.items():
            if key in hidden or value in (None, "", [], {}):
                continue
            if is_scalar(value):
                lines.append(f"- {humanize(key)}: {value}\n")
            elif isinstance(value, (list, tuple)):
                lines.append(f"- {humanize(key)}:\n")
                lines.extend(f"  - {item}\n" for item in value if is_scalar(item))
            elif isinstance(value, dict):
                lines.append(f"- {humanize(key)}:\n")
                lines.extend(f"  - {item}\n" for item in value.values() if is_scalar(item))
        if not lines:
            return ""
        return "\nCustom Data:\n" + "".join(lines)
