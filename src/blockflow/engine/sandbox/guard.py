"""Static security validation of scripts.

The script tree is checked before anything runs, so a rejected script never produces
side effects. Rejected constructs:

    - module loading: `import`, `from ... import`, importlib, __import__
    - dynamic code evaluation/construction: eval, exec, compile, type(...)
    - process and interpreter access: os, sys, subprocess, signal, gc, inspect, ...
    - global-object access: globals, locals, vars, builtins, __builtins__
    - raw binary buffers: bytes, bytearray, memoryview
    - class-hierarchy and interpreter internals: any dunder or private attribute
      (`x.__class__`, `x._loop`), frame/code attributes (`gi_frame`, `f_globals`)
    - the same names hidden in strings: literals, `chr()` arithmetic, joins, slices
      and format fields that spell a blocked identifier
    - non-literal format strings (`template.format(x)`) which can walk attributes

The worker process is the isolation boundary; this guard is the second line of
defence, and the runtime capability set (restricted builtins, safe getattr) the third.
"""

import ast
import re
from typing import Any

from .exceptions import ScriptSecurityError

BLOCKED_NAMES: dict[str, str] = {
    "eval": "dynamic code evaluation (eval)",
    "exec": "dynamic code evaluation (exec)",
    "compile": "dynamic code compilation (compile)",
    "type": "dynamic type construction (type)",
    "importlib": "module loading (importlib)",
    "globals": "global object access (globals)",
    "locals": "global object access (locals)",
    "vars": "global object access (vars)",
    "builtins": "global object access (builtins)",
    "os": "process access (os)",
    "sys": "process access (sys)",
    "posix": "process access (posix)",
    "nt": "process access (nt)",
    "signal": "process access (signal)",
    "resource": "process access (resource)",
    "subprocess": "subprocess spawning (subprocess)",
    "multiprocessing": "subprocess spawning (multiprocessing)",
    "pty": "subprocess spawning (pty)",
    "asyncio": "event loop access (asyncio)",
    "socket": "raw network access (socket)",
    "ctypes": "native memory access (ctypes)",
    "gc": "interpreter internals access (gc)",
    "inspect": "interpreter internals access (inspect)",
    "open": "file access (open)",
    "input": "console input (input)",
    "breakpoint": "debugger access (breakpoint)",
    "setattr": "dynamic attribute write (setattr)",
    "delattr": "dynamic attribute write (delattr)",
    "bytes": "raw binary buffer construction (bytes)",
    "bytearray": "raw binary buffer construction (bytearray)",
    "memoryview": "raw binary buffer construction (memoryview)",
}

# Attributes exposing frames, code objects, the event loop or the class hierarchy
BLOCKED_ATTRIBUTES: dict[str, str] = {
    name: f"interpreter frame access ({name})"
    for name in (
        "gi_frame", "gi_code", "gi_yieldfrom", "gi_running",
        "cr_frame", "cr_code", "cr_await", "cr_origin",
        "ag_frame", "ag_code", "ag_await",
        "f_globals", "f_locals", "f_builtins", "f_back", "f_code", "f_trace",
        "tb_frame", "tb_next", "co_code", "co_consts", "co_names",
        "func_globals", "func_code",
    )
} | {
    "mro": "class-hierarchy access (mro)",
    "get_loop": "event loop access (get_loop)",
}

CLASS_HIERARCHY_DUNDERS = frozenset(
    {"__class__", "__bases__", "__base__", "__mro__", "__subclasses__", "__proto__"}
)
ALLOWED_DUNDER_ATTRIBUTES = frozenset({"__init__"})

DUNDER = re.compile(r"__[A-Za-z_][A-Za-z0-9_]*__")
FORMAT_FIELD_ATTRIBUTE = re.compile(r"\{[^{}]*?\.([A-Za-z_][A-Za-z0-9_]*)[^{}]*\}")

# Cap on folded string sizes so validation stays cheap
MAX_FOLDED_LENGTH = 256

_UNFOLDABLE = object()


def describe_attribute(name: str) -> str | None:
    """Description of a blocked attribute name, or None if it is allowed."""
    if name in ALLOWED_DUNDER_ATTRIBUTES:
        return None
    if name in CLASS_HIERARCHY_DUNDERS:
        return f"class-hierarchy access ({name})"
    if name.startswith("__") and name.endswith("__"):
        return f"dunder attribute access ({name})"
    if name.startswith("_"):
        return f"private attribute access ({name})"
    return BLOCKED_ATTRIBUTES.get(name)


def describe_text(text: str) -> str | None:
    """Description of a blocked identifier spelled inside a string, if any."""
    for match in DUNDER.finditer(text):
        name = match.group(0)
        if name not in ALLOWED_DUNDER_ATTRIBUTES:
            if name in CLASS_HIERARCHY_DUNDERS:
                return f"class-hierarchy access via string ({name})"
            return f"dunder name in string ({name})"
    stripped = text.strip()
    if stripped in BLOCKED_ATTRIBUTES:
        return f"{BLOCKED_ATTRIBUTES[stripped]} via string"
    for match in FORMAT_FIELD_ATTRIBUTE.finditer(text):
        described = describe_attribute(match.group(1))
        if described:
            return f"{described} via format string"
    return None


class SecurityGuard(ast.NodeVisitor):
    """Walks a script tree and raises ScriptSecurityError at the first violation.

    Example:
        SecurityGuard().check(ast.parse("x = ().__class__"))
        # ScriptSecurityError: Security violation at line 1:
        #     class-hierarchy access (__class__) is not allowed
    """

    def check(self, tree: ast.AST) -> None:
        """Validate `tree`.

        Raises:
            ScriptSecurityError: Naming the first blocked construct found
        """
        self.visit(tree)

    def _reject(self, construct: str, node: ast.AST) -> None:
        line = getattr(node, "lineno", None)
        column = getattr(node, "col_offset", None)
        raise ScriptSecurityError(construct, line, column + 1 if column is not None else None)

    # Statements

    def visit_Import(self, node: ast.Import) -> None:
        names = ", ".join(alias.name for alias in node.names)
        self._reject(f"module loading (import {names})", node)

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        self._reject(f"module loading (from {node.module or '.'} import)", node)

    # Names and attributes

    def visit_Name(self, node: ast.Name) -> None:
        if node.id in BLOCKED_NAMES:
            self._reject(BLOCKED_NAMES[node.id], node)
        if node.id.startswith("__") and node.id.endswith("__"):
            if node.id == "__import__":
                self._reject("module loading (__import__)", node)
            if node.id == "__builtins__":
                self._reject("global object access (__builtins__)", node)
            self._reject(f"dunder name access ({node.id})", node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        described = describe_attribute(node.attr)
        if described:
            self._reject(described, node)
        self.generic_visit(node)

    def visit_MatchClass(self, node: ast.MatchClass) -> None:
        for attribute in node.kwd_attrs:
            described = describe_attribute(attribute)
            if described:
                self._reject(described, node)
        self.generic_visit(node)

    def visit_keyword(self, node: ast.keyword) -> None:
        if node.arg == "metaclass":
            self._reject("dynamic type construction (metaclass)", node)
        self.generic_visit(node)

    # Strings

    def visit_Constant(self, node: ast.Constant) -> None:
        if isinstance(node.value, str):
            described = describe_text(node.value)
            if described:
                self._reject(described, node)
        elif isinstance(node.value, bytes):
            self._reject("raw binary buffer construction (bytes literal)", node)

    def visit_Call(self, node: ast.Call) -> None:
        func = node.func
        if isinstance(func, ast.Attribute) and func.attr in ("format", "format_map"):
            if not isinstance(func.value, ast.Constant):
                self._reject(f"dynamic format string ({func.attr})", node)
        self._check_folded(node)
        self.generic_visit(node)

    def visit_BinOp(self, node: ast.BinOp) -> None:
        self._check_folded(node)
        self.generic_visit(node)

    def visit_JoinedStr(self, node: ast.JoinedStr) -> None:
        self._check_folded(node)
        self.generic_visit(node)

    def visit_Subscript(self, node: ast.Subscript) -> None:
        self._check_folded(node)
        self.generic_visit(node)

    def _check_folded(self, node: ast.expr) -> None:
        folded = fold_string(node)
        if folded is None:
            return
        described = describe_text(folded)
        if described is None and folded.strip() in BLOCKED_NAMES:
            described = BLOCKED_NAMES[folded.strip()]
        if described:
            self._reject(f"obfuscated identifier reconstruction: {described}", node)


def fold_string(node: ast.AST) -> str | None:
    """Statically evaluate string-building expressions made only of constants.

    Handles literals, chr(<int>), concatenation, repetition, %-formatting, f-strings,
    separator.join([...]), "".join(map(chr, [...])), "".join(chr(c) for c in [...]),
    constant slicing and case/strip methods. Returns None for anything else.
    """
    value = _fold(node)
    if isinstance(value, str):
        return value
    return None


def _fold(node: ast.AST) -> Any:
    match node:
        case ast.Constant(value=str() | int() as value) if not isinstance(value, bool):
            return value

        case ast.Call(func=ast.Name(id="chr"), args=[arg], keywords=[]):
            code = _fold(arg)
            if isinstance(code, int) and 0 <= code <= 0x10FFFF:
                return chr(code)
            return _UNFOLDABLE

        case ast.BinOp(op=ast.Add()):
            left, right = _fold(node.left), _fold(node.right)
            if isinstance(left, str) and isinstance(right, str):
                return _bounded(left + right)
            if isinstance(left, int) and isinstance(right, int):
                return left + right
            return _UNFOLDABLE

        case ast.BinOp(op=ast.Sub()):
            left, right = _fold(node.left), _fold(node.right)
            if isinstance(left, int) and isinstance(right, int):
                return left - right
            return _UNFOLDABLE

        case ast.BinOp(op=ast.Mult()):
            left, right = _fold(node.left), _fold(node.right)
            if isinstance(left, str) and isinstance(right, int) and right <= MAX_FOLDED_LENGTH:
                return _bounded(left * right)
            if isinstance(left, int) and isinstance(right, int):
                return left * right
            return _UNFOLDABLE

        case ast.BinOp(op=ast.Mod()):
            template = _fold(node.left)
            if not isinstance(template, str):
                return _UNFOLDABLE
            elements = node.right.elts if isinstance(node.right, ast.Tuple) else [node.right]
            arguments = [_fold(element) for element in elements]
            if any(argument is _UNFOLDABLE for argument in arguments):
                return _UNFOLDABLE
            try:
                return _bounded(template % tuple(arguments))
            except (TypeError, ValueError, OverflowError):
                return _UNFOLDABLE

        case ast.JoinedStr(values=values):
            parts = []
            for part in values:
                if isinstance(part, ast.FormattedValue):
                    part = part.value
                folded = _fold(part)
                if folded is _UNFOLDABLE:
                    return _UNFOLDABLE
                parts.append(str(folded))
            return _bounded("".join(parts))

        case ast.Subscript(value=value, slice=ast.Slice() as bounds):
            text = _fold(value)
            if not isinstance(text, str):
                return _UNFOLDABLE
            indices = [
                _fold(part) if part is not None else None
                for part in (bounds.lower, bounds.upper, bounds.step)
            ]
            if any(index is _UNFOLDABLE or isinstance(index, str) for index in indices):
                return _UNFOLDABLE
            if indices[2] == 0:
                return _UNFOLDABLE
            return text[slice(*indices)]

        case ast.Call(func=ast.Attribute(value=receiver, attr=method), args=args, keywords=[]):
            return _fold_method(receiver, method, args)

    return _UNFOLDABLE


def _fold_method(receiver: ast.expr, method: str, args: list[ast.expr]) -> Any:
    text = _fold(receiver)
    if not isinstance(text, str):
        return _UNFOLDABLE

    if method in ("lower", "upper", "strip", "swapcase", "title", "casefold") and not args:
        return getattr(text, method)()

    if method == "replace" and len(args) == 2:
        old, new = _fold(args[0]), _fold(args[1])
        if isinstance(old, str) and isinstance(new, str):
            return _bounded(text.replace(old, new))
        return _UNFOLDABLE

    if method == "format":
        arguments = [_fold(arg) for arg in args]
        if any(argument is _UNFOLDABLE for argument in arguments):
            return _UNFOLDABLE
        try:
            return _bounded(text.format(*arguments))
        except (IndexError, KeyError, ValueError):
            return _UNFOLDABLE

    if method == "join" and len(args) == 1:
        items = _fold_sequence(args[0])
        if items is None:
            return _UNFOLDABLE
        return _bounded(text.join(items))

    return _UNFOLDABLE


def _fold_sequence(node: ast.expr) -> list[str] | None:
    """Constant string items of a list/tuple, map(chr, ...) or chr-comprehension."""
    match node:
        case ast.List(elts=elements) | ast.Tuple(elts=elements):
            items = [_fold(element) for element in elements]
            if all(isinstance(item, str) for item in items):
                return items
            return None

        case ast.Call(func=ast.Name(id="map"), args=[ast.Name(id="chr"), source], keywords=[]):
            codes = _fold_int_sequence(source)
            if codes is None:
                return None
            return [chr(code) for code in codes]

        case ast.GeneratorExp(elt=element, generators=[generator]) | ast.ListComp(
            elt=element, generators=[generator]
        ):
            if generator.ifs or not isinstance(generator.target, ast.Name):
                return None
            match element:
                case ast.Call(func=ast.Name(id="chr"), args=[ast.Name(id=name)]) if (
                    name == generator.target.id
                ):
                    codes = _fold_int_sequence(generator.iter)
                    if codes is None:
                        return None
                    return [chr(code) for code in codes]
            return None

    return None


def _fold_int_sequence(node: ast.expr) -> list[int] | None:
    if not isinstance(node, (ast.List, ast.Tuple)):
        return None
    codes = [_fold(element) for element in node.elts]
    if all(isinstance(code, int) and 0 <= code <= 0x10FFFF for code in codes):
        return codes
    return None


def _bounded(text: str) -> Any:
    return text if len(text) <= MAX_FOLDED_LENGTH else _UNFOLDABLE
