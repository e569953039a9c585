"""Capability set exposed to scripts inside the worker process.

Scripts see nothing but what is assembled here: their own copy of `state`, the `cache`
API, read-only `artifacts` and `secrets`, console capture, `fetch`, `sleep`, `gather`,
`now` and a restricted set of builtins and helper namespaces.
"""

import asyncio
import builtins
import collections
import json
import math
import random
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any

import httpx

from .exceptions import ScriptSecurityError
from .guard import BLOCKED_ATTRIBUTES
from .policy import SandboxPolicy
from .ssrf import SSRFBlockedError, check_url

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


# Value normalisation


def unwrap(value: Any) -> Any:  # noqa: ANN401
    """Plain dicts and lists in place of ScriptObjects and other containers."""
    if isinstance(value, dict):
        return {key: unwrap(item) for key, item in dict.items(value)}
    if isinstance(value, (list, tuple)):
        return [unwrap(item) for item in value]
    return value


def json_default(value: Any) -> Any:  # noqa: ANN401
    """json.dumps fallback for values scripts commonly produce."""
    if isinstance(value, (set, frozenset, collections.deque)):
        return [unwrap(item) for item in value]
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, Decimal):
        return str(value)
    return repr(value)


def to_plain(value: Any) -> Any:  # noqa: ANN401
    """Detach a script value into plain JSON data (dicts, lists, scalars)."""
    return json.loads(json.dumps(unwrap(value), default=json_default))


def values_equal(left: Any, right: Any) -> bool:
    """Deep equality that also distinguishes types (1 != 1.0 != True)."""
    if type(left) is not type(right):
        return False
    if isinstance(left, dict):
        return left.keys() == right.keys() and all(
            values_equal(left[key], right[key]) for key in left
        )
    if isinstance(left, list):
        return len(left) == len(right) and all(
            values_equal(a, b) for a, b in zip(left, right, strict=True)
        )
    if isinstance(left, float) and math.isnan(left) and math.isnan(right):
        return True
    return left == right


def diff_mapping(original: dict[str, Any], final: dict[str, Any]) -> tuple[dict, list[str]]:
    """Changed/added keys of `final` and keys removed from `original`."""
    changed = {
        key: value
        for key, value in final.items()
        if key not in original or not values_equal(original[key], value)
    }
    removed = [key for key in original if key not in final]
    return changed, removed


# State


def wrap(value: Any) -> Any:  # noqa: ANN401
    """Give nested dicts attribute access (lists are updated in place)."""
    if isinstance(value, ScriptObject):
        return value
    if isinstance(value, dict):
        return ScriptObject(value)
    if isinstance(value, list):
        value[:] = [wrap(item) for item in value]
    return value


class ScriptObject(dict):
    """dict with attribute access: `state.user.name`, `state.total = 3`, `del state.tmp`.

    Keys take precedence over dict methods (`state.items` is the "items" key when one
    exists). Missing attributes read as None.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__()
        for key, value in dict(*args, **kwargs).items():
            self[key] = value

    def __getattribute__(self, name: str) -> Any:  # noqa: ANN401
        if not name.startswith("_") and dict.__contains__(self, name):
            return dict.__getitem__(self, name)
        try:
            return super().__getattribute__(name)
        except AttributeError:
            if name.startswith("_"):
                raise
            return None

    def __setattr__(self, name: str, value: Any) -> None:
        self[name] = value

    def __delattr__(self, name: str) -> None:
        dict.pop(self, name, None)

    def __setitem__(self, key: Any, value: Any) -> None:
        super().__setitem__(key, wrap(value))

    def setdefault(self, key: Any, default: Any = None) -> Any:  # noqa: ANN401
        if key not in self:
            self[key] = default
        return self[key]

    def update(self, *args: Any, **kwargs: Any) -> None:
        for key, value in dict(*args, **kwargs).items():
            self[key] = value


# Read-only values


class ReadOnlyError(TypeError):
    """Write attempted on a read-only capability."""


class ReadOnlyMapping(Mapping):
    """Immutable view with attribute access, used for `secrets`."""

    def __init__(self, data: Mapping[str, Any], label: str) -> None:
        object.__setattr__(self, "_data", dict(data))
        object.__setattr__(self, "_label", label)

    def __getitem__(self, key: str) -> Any:  # noqa: ANN401
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __getattr__(self, name: str) -> Any:  # noqa: ANN401
        if name.startswith("_"):
            raise AttributeError(name)
        return self._data.get(name)

    def _reject(self, *args: Any) -> None:
        raise ReadOnlyError(f"Cannot modify {self._label}: they are read-only")

    __setitem__ = _reject
    __delitem__ = _reject
    __setattr__ = _reject
    __delattr__ = _reject

    def __repr__(self) -> str:
        return f"<{self._label}: {len(self._data)} entries>"


# Cache


class CacheApi:
    """`cache.get/set/has/delete/keys` over the script's copy of the run cache."""

    def __init__(self, data: dict[str, Any]) -> None:
        self._data = dict(data)

    def get(self, key: str, default: Any = None) -> Any:  # noqa: ANN401
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[str(key)] = value

    def has(self, key: str) -> bool:
        return key in self._data

    def delete(self, key: str) -> bool:
        return self._data.pop(key, _MISSING) is not _MISSING

    def keys(self) -> list[str]:
        return list(self._data)

    def snapshot(self) -> dict[str, Any]:
        return to_plain(self._data)


_MISSING = object()


# Console


class Console:
    """Collects console entries `{level, args, timestamp}` instead of writing output.

    Capture stops at `max_entries` entries or `max_bytes` of serialised arguments; a
    single truncation notice is appended at that point.
    The limits are private so scripts cannot raise them.
    """

    def __init__(self, max_entries: int, max_bytes: int) -> None:
        self.entries: list[dict[str, Any]] = []
        self._max_entries = max_entries
        self._max_bytes = max_bytes
        self._bytes = 0
        self._truncated = False

    def _write(self, level: str, args: tuple[Any, ...]) -> None:
        if self._truncated:
            return
        plain_args = [to_plain(arg) for arg in args]
        size = len(json.dumps(plain_args))
        if len(self.entries) >= self._max_entries or self._bytes + size > self._max_bytes:
            self._truncated = True
            self.entries.append(
                {
                    "level": "warn",
                    "args": [
                        f"Console output truncated (limit: {self._max_entries} entries, "
                        f"{self._max_bytes} bytes)"
                    ],
                    "timestamp": now(),
                }
            )
            return
        self._bytes += size
        self.entries.append({"level": level, "args": plain_args, "timestamp": now()})

    def log(self, *args: Any) -> None:
        self._write("log", args)

    def info(self, *args: Any) -> None:
        self._write("info", args)

    def warn(self, *args: Any) -> None:
        self._write("warn", args)

    warning = warn

    def error(self, *args: Any) -> None:
        self._write("error", args)

    def debug(self, *args: Any) -> None:
        self._write("debug", args)

    def print(self, *args: Any, sep: str = " ", end: str = "\n", **_: Any) -> None:
        self._write("log", args)


# Network


class FetchError(RuntimeError):
    """fetch() failed outside of the HTTP exchange itself."""


class FetchResponse:
    """Buffered HTTP response handed to scripts."""

    def __init__(self, response: httpx.Response) -> None:
        self.status = response.status_code
        self.status_code = response.status_code
        self.ok = 200 <= response.status_code < 300
        self.headers = {key.lower(): value for key, value in response.headers.items()}
        self.url = str(response.url)
        self._text = response.text

    def text(self) -> str:
        return self._text

    def json(self) -> Any:  # noqa: ANN401
        return wrap(json.loads(self._text))

    def __repr__(self) -> str:
        return f"<FetchResponse {self.status} {self.url}>"


class Fetcher:
    """`await fetch(url, ...)`: httpx request with every hop checked by the SSRF policy."""

    def __init__(self, policy: SandboxPolicy) -> None:
        self._policy = policy

    async def __call__(
        self,
        url: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        json: Any = None,
        timeout: float | None = None,
    ) -> FetchResponse:
        method = str(method).upper()
        request_headers = {str(key): str(value) for key, value in dict(headers or {}).items()}
        if isinstance(body, (dict, list)) and json is None:
            body, json = None, body
        content = None if body is None else str(body)
        json_body = to_plain(json) if json is not None else None

        seconds = self._policy.fetch_timeout_s
        if timeout is not None:
            seconds = min(float(timeout), seconds)

        async with httpx.AsyncClient(
            timeout=seconds, follow_redirects=False, trust_env=False
        ) as client:
            current = str(url)
            for _ in range(self._policy.max_redirects + 1):
                await check_url(current, self._policy.allowed_hosts)
                response = await client.request(
                    method, current, headers=request_headers, content=content, json=json_body
                )
                location = response.headers.get("location")
                if response.status_code not in REDIRECT_STATUSES or not location:
                    return FetchResponse(response)

                current = str(response.url.join(location))
                if response.status_code == 303 or (
                    response.status_code in (301, 302) and method == "POST"
                ):
                    method, content, json_body = "GET", None, None

        raise FetchError(f"Too many redirects (max {self._policy.max_redirects}): {url}")


# Helpers


def now() -> str:
    """Current instant as an ISO-8601 UTC timestamp."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


async def gather(*awaitables: Any) -> list[Any]:
    """Await several coroutines concurrently; results in argument order."""
    return list(await asyncio.gather(*awaitables))


def _namespace(module: Any, names: list[str]) -> SimpleNamespace:
    return SimpleNamespace(**{name: getattr(module, name) for name in names})


def _attribute_allowed(name: Any) -> bool:
    return (
        isinstance(name, str)
        and not name.startswith("_")
        and name not in BLOCKED_ATTRIBUTES
        and name not in ("format", "format_map")
    )


def safe_getattr(obj: Any, name: str, *default: Any) -> Any:  # noqa: ANN401
    """getattr() limited to public, non-internal attributes.

    Names computed at run time are checked here; a blocked one is a security violation.
    """
    if not _attribute_allowed(name):
        raise ScriptSecurityError(f"attribute access ({name})")
    return getattr(obj, name, *default)


def safe_hasattr(obj: Any, name: str) -> bool:
    """hasattr() with the same attribute check as safe_getattr()."""
    if not _attribute_allowed(name):
        raise ScriptSecurityError(f"attribute access ({name})")
    return hasattr(obj, name)


SAFE_BUILTIN_NAMES = [
    "abs", "aiter", "all", "anext", "any", "bin", "bool", "callable", "chr", "classmethod",
    "dict", "divmod", "enumerate", "filter", "float", "format", "frozenset", "hash", "hex",
    "int", "isinstance", "issubclass", "iter", "len", "list", "map", "max", "min", "next",
    "object", "oct", "ord", "pow", "property", "range", "repr", "reversed", "round", "set",
    "slice", "sorted", "staticmethod", "str", "sum", "super", "tuple", "zip",
    "__build_class__",
    "ArithmeticError", "AssertionError", "AttributeError", "Exception", "IndexError",
    "KeyError", "LookupError", "NotImplementedError", "OverflowError", "PermissionError",
    "RuntimeError", "StopAsyncIteration", "StopIteration", "TimeoutError", "TypeError",
    "ValueError", "ZeroDivisionError",
]


def safe_builtins(console: Console) -> dict[str, Any]:
    """Builtins visible to scripts."""
    allowed = {name: getattr(builtins, name) for name in SAFE_BUILTIN_NAMES}
    allowed["getattr"] = safe_getattr
    allowed["hasattr"] = safe_hasattr
    allowed["print"] = console.print
    return allowed


@dataclass
class ScriptCapabilities:
    """Everything a script can touch, plus the bookkeeping to diff it afterwards."""

    policy: SandboxPolicy
    original_state: dict[str, Any]
    original_cache: dict[str, Any]
    artifacts: list[Any] = field(default_factory=list)
    secrets: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.state = ScriptObject(json.loads(json.dumps(self.original_state)))
        self.cache = CacheApi(json.loads(json.dumps(self.original_cache)))
        self.console = Console(self.policy.max_console_entries, self.policy.max_console_bytes)

    def namespace(self) -> dict[str, Any]:
        """Global namespace for the compiled script."""
        max_sleep_s = self.policy.max_sleep_s

        async def sleep(seconds: float = 0) -> None:
            await asyncio.sleep(min(max(float(seconds), 0.0), max_sleep_s))

        return {
            "__builtins__": safe_builtins(self.console),
            "__name__": "script",
            "state": self.state,
            "cache": self.cache,
            "artifacts": tuple(wrap(to_plain(item)) for item in self.artifacts),
            "secrets": ReadOnlyMapping(self.secrets, "secrets"),
            "console": self.console,
            "fetch": Fetcher(self.policy),
            "sleep": sleep,
            "gather": gather,
            "now": now,
            "json": SimpleNamespace(
                loads=lambda text: wrap(json.loads(text)),
                dumps=lambda value, indent=None, sort_keys=False: json.dumps(
                    unwrap(value), indent=indent, sort_keys=sort_keys, default=json_default
                ),
            ),
            "math": _namespace(math, [name for name in dir(math) if not name.startswith("_")]),
            "re": _namespace(
                re,
                ["search", "match", "fullmatch", "findall", "finditer", "sub", "split",
                 "compile", "escape", "IGNORECASE", "MULTILINE", "DOTALL", "VERBOSE",
                 "I", "M", "S", "X"],
            ),
            "random": _namespace(
                random,
                ["random", "randint", "uniform", "choice", "choices", "sample", "shuffle",
                 "gauss", "seed"],
            ),
            "datetime": datetime,
            "date": date,
            "time": time,
            "timedelta": timedelta,
            "timezone": timezone,
            "Counter": collections.Counter,
            "defaultdict": collections.defaultdict,
            "deque": collections.deque,
            "OrderedDict": collections.OrderedDict,
            "Decimal": Decimal,
            "ReadOnlyError": ReadOnlyError,
            "SSRFBlockedError": SSRFBlockedError,
            "FetchError": FetchError,
        }

    def state_changes(self) -> tuple[dict[str, Any], list[str]]:
        """(changed keys, removed keys) of the script's state against the original."""
        return diff_mapping(self.original_state, to_plain(dict(self.state)))

    def cache_changes(self) -> tuple[dict[str, Any], list[str]]:
        """(changed keys, removed keys) of the script's cache against the original."""
        return diff_mapping(self.original_cache, self.cache.snapshot())
