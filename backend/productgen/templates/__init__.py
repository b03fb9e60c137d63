"""Prompt templates for product content generation."""

from productgen.templates.base import PromptTemplate, RenderedPrompt
from productgen.templates.registry import TemplateRegistry, build_default_registry

__all__ = [
    "PromptTemplate",
    "RenderedPrompt",
    "TemplateRegistry",
    "build_default_registry",
]
