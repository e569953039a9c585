"""Tests for static script validation."""

import ast
import textwrap

import pytest

from blockflow.engine.sandbox import ScriptSecurityError, SecurityGuard
from blockflow.engine.sandbox.guard import fold_string


def check(source: str) -> None:
    SecurityGuard().check(ast.parse(textwrap.dedent(source)))


class TestBlockedConstructs:
    """Direct use of blocked names and attributes."""

    @pytest.mark.parametrize(
        ("source", "construct"),
        [
            ("import os", "module loading (import os)"),
            ("from pathlib import Path", "module loading (from pathlib import)"),
            ("__import__('os')", "module loading (__import__)"),
            ("eval('1 + 1')", "dynamic code evaluation (eval)"),
            ("exec('x = 1')", "dynamic code evaluation (exec)"),
            ("compile('1', 'f', 'eval')", "dynamic code compilation (compile)"),
            ("type('X', (), {})", "dynamic type construction (type)"),
            ("globals()", "global object access (globals)"),
            ("__builtins__", "global object access (__builtins__)"),
            ("open('/etc/passwd')", "file access (open)"),
            ("input()", "console input (input)"),
            ("breakpoint()", "debugger access (breakpoint)"),
            ("setattr(state, 'x', 1)", "dynamic attribute write (setattr)"),
            ("bytearray(10)", "raw binary buffer construction (bytearray)"),
            ("x = b'raw'", "raw binary buffer construction (bytes literal)"),
            ("().__class__", "class-hierarchy access (__class__)"),
            ("object.__subclasses__()", "class-hierarchy access (__subclasses__)"),
            ("f.__globals__", "dunder attribute access (__globals__)"),
            ("fetch._client", "private attribute access (_client)"),
            ("coro.cr_frame", "interpreter frame access (cr_frame)"),
            ("err.tb_frame.f_back", "interpreter frame access (f_back)"),
            ("str.mro()", "class-hierarchy access (mro)"),
            ("class A(metaclass=M):\n    pass", "dynamic type construction (metaclass)"),
        ],
    )
    def test_rejected(self, source: str, construct: str) -> None:
        with pytest.raises(ScriptSecurityError) as exc_info:
            check(source)
        assert exc_info.value.message == construct
        assert str(exc_info.value) == f"Security violation at line 1: {construct} is not allowed"

    def test_position_reported(self) -> None:
        with pytest.raises(ScriptSecurityError) as exc_info:
            check("x = 1\ny = 2\nz = eval('3')")
        assert exc_info.value.line == 3
        assert exc_info.value.column == 5
        assert exc_info.value.kind == "security"

    def test_match_class_keyword_attributes(self) -> None:
        source = """
        match value:
            case str(__class__=cls):
                pass
        """
        with pytest.raises(ScriptSecurityError, match="__class__"):
            check(source)


class TestStringsAndFormatting:
    """Blocked names hidden in strings."""

    @pytest.mark.parametrize(
        "source",
        [
            "getattr(x, '__class__')",
            "getattr(gen, 'gi_frame')",
            "'{0.__class__}'.format(x)",
            "'{0.gi_frame}'.format(gen)",
            "'{0._secret}'.format(obj)",
        ],
    )
    def test_blocked_names_in_literals(self, source: str) -> None:
        with pytest.raises(ScriptSecurityError):
            check(source)

    def test_dynamic_format_string(self) -> None:
        with pytest.raises(ScriptSecurityError, match="dynamic format string"):
            check("template.format(value)")
        with pytest.raises(ScriptSecurityError, match="format_map"):
            check("template.format_map(values)")


class TestObfuscation:
    """Constant expressions spelling blocked identifiers."""

    @pytest.mark.parametrize(
        "source",
        [
            "getattr(x, chr(95) + chr(95) + 'class' + chr(95) + chr(95))",
            "getattr(x, '__cla' + 'ss__')",
            "getattr(x, '_' * 2 + 'class' + '_' * 2)",
            "name = ''.join(['e', 'v', 'a', 'l'])",
            "name = 'lave'[::-1]",
            "name = ''.join(map(chr, [101, 118, 97, 108]))",
            "name = ''.join(chr(c) for c in [101, 120, 101, 99])",
            "name = '%s%s' % ('__glo', 'bals__')",
            "name = 'GI_FRAME'.lower()",
            "name = 'xval'.replace('x', 'e')",
            "name = '{}{}'.format('ev', 'al')",
            "name = f\"{'__cl'}ass__\"",
        ],
    )
    def test_reconstruction_rejected(self, source: str) -> None:
        with pytest.raises(ScriptSecurityError, match="obfuscated identifier reconstruction"):
            check(source)

    def test_fold_string(self) -> None:
        assert fold_string(ast.parse("chr(104) + 'i'", mode="eval").body) == "hi"
        assert fold_string(ast.parse("'-'.join(['a', 'b'])", mode="eval").body) == "a-b"
        assert fold_string(ast.parse("name + 'x'", mode="eval").body) is None
        assert fold_string(ast.parse("'ab' * 1000", mode="eval").body) is None


class TestAllowed:
    """Ordinary scripts pass."""

    @pytest.mark.parametrize(
        "source",
        [
            "state.total = sum(item['qty'] for item in state['items'])",
            "result = await fetch('https://api.example.com/data')\nresult.json()",
            "'Hello {}'.format(state.name)",
            "f'{state.name} has {len(state.items)} items'",
            "label = 'ok'.upper() + '!'",
            "getattr(state, 'name', None)",
            "import_count = 3",
            "try:\n    x = 1 / 0\nexcept ZeroDivisionError as e:\n    console.error(str(e))",
            "match state.kind:\n    case 'a':\n        x = 1\n    case _:\n        x = 2",
        ],
    )
    def test_allowed(self, source: str) -> None:
        check(source)

    def test_classes_with_init_and_super(self) -> None:
        source = """
        class Base:
            def __init__(self, value):
                self.value = value

        class Child(Base):
            def __init__(self, value):
                super().__init__(value * 2)

        Child(2).value
        """
        check(source)
