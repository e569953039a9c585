"""
Reference resolution for run contexts.

Exports:
    ContextResolver: `$`-reference resolution and {{template}} interpolation
    ExpressionClassifier / ExpressionType: literal vs reference vs template routing
    parse_path / walk_path: accessor-chain helpers
"""

from .classifier import ExpressionClassifier, ExpressionType
from .context_resolver import ContextResolver, stringify
from .paths import parse_path, walk_path

__all__ = [
    "ContextResolver",
    "ExpressionClassifier",
    "ExpressionType",
    "parse_path",
    "stringify",
    "walk_path",
]
