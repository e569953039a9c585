"""
Context resolver: `$`-reference resolution and {{template}} interpolation.

Resolution rules:
    $state.order.id      -> context.state["order"]["id"]
    $cache.temp          -> context.cache["temp"]
    $artifacts[0]        -> context.artifacts[0]
    $secrets.api_key     -> context.secrets["api_key"]
    $paths.temp_dir      -> context.paths["temp_dir"]
    $event.type          -> context.event["type"]
    $run.id              -> context.run.id
    $error.message       -> message of the most recent block failure
    $now                 -> current instant (ISO-8601)
    $keys.my.api_key     -> context.key_resolver("my.api_key")
    $loop.<id>.index     -> context.loops[id].index
    $index / $item / $row -> cursor of the most recently inserted loop

Resolution is total: a missing root, path segment or key yields None, and the
context is never modified.
"""

import json
import logging
from typing import Any

from ..context import RunContext, utc_now_iso
from .classifier import TEMPLATE_MARKER, ExpressionClassifier, ExpressionType
from .paths import parse_path, walk_path

logger = logging.getLogger(__name__)


def stringify(value: Any) -> str:
    """Render a resolved value for template output."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


class ContextResolver:
    """Resolve references and templates against a RunContext.

    Stateless; one instance may serve any number of concurrent runs.
    """

    def __init__(self) -> None:
        self.classifier = ExpressionClassifier()

    def resolve(self, expression: str, context: RunContext) -> Any:
        """Resolve a single expression.

        A string without the `$` prefix resolves to itself (trimmed).
        """
        trimmed = expression.strip()
        if not trimmed.startswith("$"):
            return trimmed

        segments = parse_path(trimmed[1:])
        if not segments:
            return None

        root, rest = self._resolve_root(segments[0], segments[1:], context)
        if not rest:
            return root
        return walk_path(root, rest)

    def resolve_value(self, value: Any, context: RunContext) -> Any:
        """Resolve a value that may be a reference, a template or a plain literal."""
        match self.classifier.classify(value):
            case ExpressionType.REFERENCE:
                return self.resolve(value, context)
            case ExpressionType.TEMPLATE:
                return self.interpolate(value, context)
            case _:
                return value

    def interpolate(self, template: str, context: RunContext) -> str:
        """Replace every {{expr}} with its resolved value ("" when unresolved)."""
        return TEMPLATE_MARKER.sub(
            lambda match: stringify(self.resolve(match.group(1), context)), template
        )

    def _resolve_root(
        self, prefix: str, rest: list[str], context: RunContext
    ) -> tuple[Any, list[str]]:
        """Resolve the root selector; returns the root value and the unconsumed path."""
        match prefix:
            case "state":
                return context.state, rest
            case "cache":
                if rest:
                    return context.cache.get(rest[0]), rest[1:]
                return context.cache, rest
            case "artifacts":
                return context.artifacts, rest
            case "secrets":
                return context.secrets, rest
            case "paths":
                return context.paths, rest
            case "event":
                return context.event, rest
            case "run":
                return context.run.model_dump(mode="json"), rest
            case "error":
                return context.last_error or {}, rest
            case "now":
                return utc_now_iso(), rest
            case "keys":
                if context.key_resolver is None or not rest:
                    return None, []
                return self._resolve_key(".".join(rest), context), []
            case "loop":
                if rest:
                    cursor = context.loops.get(rest[0])
                    return (cursor.model_dump() if cursor else None), rest[1:]
                return {name: c.model_dump() for name, c in context.loops.items()}, rest
            case "index":
                cursor = context.active_loop()
                return (cursor.index if cursor else None), rest
            case "row":
                cursor = context.active_loop()
                return (cursor.artifact if cursor else None), rest
            case "item":
                cursor = context.active_loop()
                if cursor is None:
                    return None, rest
                return (cursor.item if cursor.item is not None else cursor.artifact), rest
            case _:
                return None, rest

    def _resolve_key(self, name: str, context: RunContext) -> Any:
        assert context.key_resolver is not None
        try:
            return context.key_resolver(name)
        except Exception as e:
            # Absence is a value here; callers decide whether a missing key is fatal
            logger.debug(f"Key '{name}' could not be resolved: {e}")
            return None
