"""Directive interpreter for wiki documents."""

from .engine import TemplateContext, TemplatingEngine

__all__ = ["TemplateContext", "TemplatingEngine"]
