"""Structural erasure of static typing constructs from scripts.

Scripts may carry type information that has no runtime meaning. It is removed from
the parsed tree before validation and compilation:

    x: int = 5                      -> x = 5
    x: int                          -> (removed)
    def f(a: int) -> str: ...       -> def f(a): ...
    def f[T](a: T) -> T: ...        -> def f(a): ...
    class P(Protocol): ...          -> (removed)
    class Row(TypedDict): ...       -> (removed)
    class Box(Generic[T]): ...      -> class Box: ...
    type Pair = tuple[int, int]     -> (removed)
    T = TypeVar("T")                -> (removed)
    cast(int, value)                -> value
    from typing import Any          -> (removed)
    if TYPE_CHECKING: ...           -> (removed)

Only nodes that carry no runtime behaviour are touched, so erasure never changes what
the remaining code does.
"""

import ast

TYPING_MODULES = frozenset({"typing", "typing_extensions", "__future__", "collections.abc"})
INTERFACE_BASES = frozenset({"Protocol", "TypedDict"})
TYPE_FACTORIES = frozenset({"TypeVar", "ParamSpec", "TypeVarTuple", "NewType", "TypeAliasType"})
GENERIC_BASES = frozenset({"Generic"})


def _simple_name(node: ast.expr) -> str | None:
    """`Name` or trailing `Attribute` name (typing.Protocol -> Protocol)."""
    if isinstance(node, ast.Subscript):
        node = node.value
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    return None


class TypeEraser(ast.NodeTransformer):
    """NodeTransformer removing annotations and typing-only statements."""

    def generic_visit(self, node: ast.AST) -> ast.AST:
        node = super().generic_visit(node)
        # A block emptied by erasure still needs a statement
        body = getattr(node, "body", None)
        if isinstance(body, list) and not body and not isinstance(node, ast.Module):
            node.body = [ast.Pass()]
        return node

    def visit_AnnAssign(self, node: ast.AnnAssign) -> ast.AST | None:
        if node.value is None:
            return None
        assign = ast.Assign(targets=[node.target], value=node.value)
        return self.visit(ast.copy_location(assign, node))

    def visit_TypeAlias(self, node: ast.AST) -> None:
        return None

    def visit_Import(self, node: ast.Import) -> ast.AST | None:
        if all(alias.name in TYPING_MODULES for alias in node.names):
            return None
        return node

    def visit_ImportFrom(self, node: ast.ImportFrom) -> ast.AST | None:
        if node.module in TYPING_MODULES:
            return None
        return node

    def visit_If(self, node: ast.If) -> ast.AST | list[ast.stmt] | None:
        if _simple_name(node.test) != "TYPE_CHECKING":
            return self.generic_visit(node)

        kept: list[ast.stmt] = []
        for stmt in node.orelse:
            visited = self.visit(stmt)
            if isinstance(visited, list):
                kept.extend(visited)
            elif visited is not None:
                kept.append(visited)
        return kept or None

    def visit_Assign(self, node: ast.Assign) -> ast.AST | None:
        if isinstance(node.value, ast.Call) and _simple_name(node.value.func) in TYPE_FACTORIES:
            return None
        return self.generic_visit(node)

    def visit_Call(self, node: ast.Call) -> ast.AST:
        if _simple_name(node.func) == "cast" and len(node.args) == 2 and not node.keywords:
            return self.visit(node.args[1])
        return self.generic_visit(node)

    def visit_ClassDef(self, node: ast.ClassDef) -> ast.AST | None:
        base_names = {_simple_name(base) for base in node.bases}
        if base_names & INTERFACE_BASES:
            return None
        node.bases = [base for base in node.bases if _simple_name(base) not in GENERIC_BASES]
        node.bases = [
            base.value if isinstance(base, ast.Subscript) else base for base in node.bases
        ]
        if hasattr(node, "type_params"):
            node.type_params = []
        return self.generic_visit(node)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> ast.AST:
        self._strip_signature(node)
        return self.generic_visit(node)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> ast.AST:
        self._strip_signature(node)
        return self.generic_visit(node)

    @staticmethod
    def _strip_signature(node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        node.returns = None
        if hasattr(node, "type_params"):
            node.type_params = []
        arguments = node.args
        for arg in (*arguments.posonlyargs, *arguments.args, *arguments.kwonlyargs):
            arg.annotation = None
        if arguments.vararg:
            arguments.vararg.annotation = None
        if arguments.kwarg:
            arguments.kwarg.annotation = None


def erase_types(tree: ast.Module) -> ast.Module:
    """Return `tree` with typing constructs erased (the tree is modified in place)."""
    erased = TypeEraser().visit(tree)
    return ast.fix_missing_locations(erased)
