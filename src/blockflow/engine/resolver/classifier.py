"""
Expression classification for value resolution.

Block logic values and condition operands come in three shapes:
    LITERAL:   plain value, returned unchanged ("hello", 42)
    REFERENCE: `$`-prefixed accessor chain, resolved to a typed value ("$state.count")
    TEMPLATE:  text with embedded {{...}} markers, rendered to a string ("Hi {{$state.name}}")
"""

import re
from enum import Enum
from typing import Any

TEMPLATE_MARKER = re.compile(r"\{\{(.+?)\}\}")


class ExpressionType(Enum):
    """Types of values for resolution routing."""

    LITERAL = "literal"
    REFERENCE = "reference"
    TEMPLATE = "template"


class ExpressionClassifier:
    """
    Classify values to route them to the appropriate resolution path.

    Example:
        classifier = ExpressionClassifier()
        classifier.classify("$state.total")        # ExpressionType.REFERENCE
        classifier.classify("Total: {{$state.total}}")  # ExpressionType.TEMPLATE
    """

    def classify(self, value: Any) -> ExpressionType:
        """Classify a raw value."""
        if not isinstance(value, str):
            return ExpressionType.LITERAL
        if value.startswith("$"):
            return ExpressionType.REFERENCE
        if "{{" in value:
            return ExpressionType.TEMPLATE
        return ExpressionType.LITERAL

    def references(self, template: str) -> list[str]:
        """Inner expressions of every {{...}} marker, in order of appearance."""
        return [match.strip() for match in TEMPLATE_MARKER.findall(template)]
