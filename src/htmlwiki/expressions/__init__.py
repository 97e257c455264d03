"""Embedded expression language used by templates and query strings."""

from .evaluator import EvaluationContext, ParamsView, evaluate, pipeline, to_text, truthy
from .parser import parse_expression

__all__ = [
    "EvaluationContext",
    "ParamsView",
    "evaluate",
    "parse_expression",
    "pipeline",
    "to_text",
    "truthy",
]
