"""Prompt templates for the course assistant."""

from .templates import PromptTemplateManager

__all__ = ["PromptTemplateManager"]
