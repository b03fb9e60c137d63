"""Error taxonomy for planning, queue control and per-item generation."""


class ProductGenError(Exception):
    """Base class; ``code`` is a stable machine-readable identifier."""

    code = "error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    default_message = "Product generation error"

    @property
    def message(self) -> str:
        return str(self)


# Configuration errors: raised before a queue enters processing.

class ConfigurationError(ProductGenError):
    code = "invalid_configuration"


class InvalidSelector(ConfigurationError):
    code = "invalid_query"
    default_message = "Invalid product selector."


class NoTasksEnabled(ConfigurationError):
    code = "no_templates"
    default_message = "No templates selected."


class NoMatchingProducts(ConfigurationError):
    code = "no_products"
    default_message = "No products found matching the query."


class NoWorkRemaining(ConfigurationError):
    code = "no_work"
    default_message = "No work to do. All selected templates may already be generated."


# Queue control errors

class QueueError(ProductGenError):
    code = "queue_error"


class QueueNotFound(QueueError):
    code = "invalid_queue"
    default_message = "Invalid queue ID."


class InvalidTransition(QueueError):
    code = "invalid_transition"
    default_message = "Queue cannot change to the requested status."


class QueueLocked(QueueError):
    code = "queue_processing"
    default_message = "Queue cannot be modified while processing."


class QueueAlreadyProcessing(QueueError):
    code = "queue_locked"
    default_message = "Another queue is already processing."


# Per-item errors: caught by the item executor and stored as results.

class ItemError(ProductGenError):
    code = "item_error"


class TemplateNotFound(ItemError):
    code = "template_not_found"
    default_message = "Template not found"


class ProductNotFound(ItemError):
    code = "product_not_found"
    default_message = "Product not found"


class GenerationError(ItemError):
    code = "generation_error"
    default_message = "Generation failed"
