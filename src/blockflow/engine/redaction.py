"""Secret redaction for run results.

Secret values from a run's context can leak into step errors, console output and
deltas (a script printing `secrets.api_key`, an HTTP error echoing a token). The
SecretRedactor masks them before a RunResult leaves the engine as a response.

Example:
    >>> redactor = SecretRedactor({"api_key": "sk-1234567890abcdef"})
    >>> redactor.redact({"error": "401 for sk-1234567890abcdef"})
    {'error': '401 for ***REDACTED***'}
"""

import re
from collections.abc import Mapping
from typing import Any


class SecretRedactor:
    """Masks secret values wherever they occur inside strings of nested data.

    Values shorter than MIN_SECRET_LENGTH are not treated as secrets (too many false
    positives). Containers keep their shape; only strings change.
    """

    MIN_SECRET_LENGTH = 8
    REDACTION_MARKER = "***REDACTED***"

    def __init__(self, secrets: Mapping[str, Any]) -> None:
        candidates = {str(value) for value in secrets.values() if value is not None}
        self.secret_values = sorted(
            (value for value in candidates if len(value) >= self.MIN_SECRET_LENGTH),
            key=len,
            reverse=True,
        )
        # One alternation, longest first, so a secret containing another is masked whole
        self._pattern = (
            re.compile("|".join(re.escape(value) for value in self.secret_values))
            if self.secret_values
            else None
        )

    def redact(self, data: Any) -> Any:  # noqa: ANN401
        """Copy of `data` with every secret occurrence replaced by the marker."""
        if self._pattern is None:
            return data
        match data:
            case str():
                return self._pattern.sub(self.REDACTION_MARKER, data)
            case dict():
                return {key: self.redact(item) for key, item in data.items()}
            case list() | tuple():
                return type(data)(self.redact(item) for item in data)
            case _:
                return data
