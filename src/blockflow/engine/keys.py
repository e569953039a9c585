"""Key-resolution capability for `$keys.<name>` references.

The key-management subsystem is external; the core only consumes a synchronous
lookup. Two implementations ship with the engine:

    - EnvVarKeyResolver: reads BLOCKFLOW_KEY_{NAME} environment variables
    - MappingKeyResolver: serves keys from an in-memory mapping (tests, embedding)

Example:
    >>> resolver = EnvVarKeyResolver()
    >>> resolver.resolve("openai.token")   # reads BLOCKFLOW_KEY_OPENAI_TOKEN
"""

import os
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping


class KeyResolutionError(Exception):
    """Base exception for key-resolution failures."""


class KeyNotFoundError(KeyResolutionError):
    """A requested key does not exist in the resolver.

    Attributes:
        name: The key that was not found
        provider_hint: Optional hint about where to configure the key
    """

    def __init__(self, name: str, provider_hint: str | None = None) -> None:
        self.name = name
        self.provider_hint = provider_hint

        message = f"Key '{name}' not found"
        if provider_hint:
            message += f". {provider_hint}"
        super().__init__(message)


class KeyResolver(ABC):
    """Late-bound lookup of named keys.

    Implementations raise KeyNotFoundError for unknown names; the context resolver
    turns any failure into an unresolved (None) reference.
    """

    @abstractmethod
    def resolve(self, name: str) -> str:
        """Return the key value for `name`."""

    def __call__(self, name: str) -> str:
        return self.resolve(name)


class EnvVarKeyResolver(KeyResolver):
    """Key resolver backed by environment variables.

    Key names are upper-cased and every character outside [A-Z0-9_] becomes an
    underscore, so `openai.token` maps to BLOCKFLOW_KEY_OPENAI_TOKEN.
    """

    _INVALID = re.compile(r"[^A-Z0-9_]")

    def __init__(self, prefix: str = "BLOCKFLOW_KEY_") -> None:
        self.prefix = prefix

    def _get_env_var_name(self, name: str) -> str:
        return f"{self.prefix}{self._INVALID.sub('_', name.upper())}"

    def resolve(self, name: str) -> str:
        env_var_name = self._get_env_var_name(name)
        value = os.environ.get(env_var_name)
        if value is None:
            raise KeyNotFoundError(
                name, provider_hint=f"Set environment variable: {env_var_name}=<value>"
            )
        return value


class MappingKeyResolver(KeyResolver):
    """Key resolver serving a fixed mapping."""

    def __init__(self, keys: Mapping[str, str]) -> None:
        self._keys = dict(keys)

    def resolve(self, name: str) -> str:
        try:
            return self._keys[name]
        except KeyError:
            raise KeyNotFoundError(name) from None
