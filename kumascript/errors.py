"""
Error taxonomy and the lineage error sink.
Path: kumascript/errors.py
"""

import threading
from typing import Any, Dict, Iterator, List, Optional


class KumaScriptError(Exception):
    """Base class for all KumaScript runtime errors."""
    pass


class TemplateError(KumaScriptError):
    """A failure recorded against a named template."""

    kind = "template"

    def __init__(self, name: str, error: BaseException, message: Optional[str] = None):
        self.name = name
        self.error = error
        self.message = message or f"{self.describe()} '{name}': {type(error).__name__}: {error}"
        super().__init__(self.message)

    def describe(self) -> str:
        return "Template error in"

    def to_dict(self) -> Dict[str, Any]:
        """Serializable summary used by the renderer's error report."""
        return {
            "kind": self.kind,
            "name": self.name,
            "error_type": type(self.error).__name__,
            "message": self.message
        }


class TemplateLoadingError(TemplateError):
    """The template name could not be resolved by the loader."""

    kind = "loading"

    def describe(self) -> str:
        return "Problem loading template"


class TemplateExecutionError(TemplateError):
    """The template was resolved but its execution reported a failure."""

    kind = "execution"

    def __init__(self, name: str, error: BaseException, token: Optional[Dict[str, Any]] = None):
        self.token = token or {"type": "none", "name": name}
        super().__init__(name, error)

    def describe(self) -> str:
        return "Problem executing template"

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["token"] = dict(self.token)
        return data


class TemplateNotFoundError(KumaScriptError, LookupError):
    """Raised by loaders for names they cannot resolve."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Template '{name}' not found")


class CacheError(KumaScriptError):
    """Cache backend I/O failure."""

    def __init__(self, operation: str, key: str, error: BaseException):
        self.operation = operation
        self.key = key
        self.error = error
        super().__init__(f"Cache {operation} failed for key '{key}': {error}")


class CompletionError(KumaScriptError, RuntimeError):
    """A completion signal was fired more than once."""
    pass


class SuspendedCallTimeout(KumaScriptError, TimeoutError):
    """A suspended call did not complete before its deadline."""

    def __init__(self, timeout: float, operation: str = "call"):
        self.timeout = timeout
        self.operation = operation
        super().__init__(f"Suspended {operation} timed out after {timeout}s")


class ConfigValidationError(KumaScriptError):
    """Server options failed schema validation."""
    pass


class ErrorSink:
    """
    Append-only, ordered record of template failures for one rendering.

    Shared by every context in a lineage. The renderer reads it once the
    top-level template completes to decide between "rendered with warnings"
    and a failed render.
    """

    def __init__(self):
        self._errors: List[TemplateError] = []
        self._lock = threading.Lock()

    def append(self, error: TemplateError) -> None:
        with self._lock:
            self._errors.append(error)

    def snapshot(self) -> List[TemplateError]:
        """Copy of the errors recorded so far."""
        with self._lock:
            return list(self._errors)

    def for_template(self, name: str) -> List[TemplateError]:
        return [e for e in self.snapshot() if e.name == name]

    def __len__(self) -> int:
        with self._lock:
            return len(self._errors)

    def __iter__(self) -> Iterator[TemplateError]:
        return iter(self.snapshot())

    def __getitem__(self, index: int) -> TemplateError:
        with self._lock:
            return self._errors[index]

    def __bool__(self) -> bool:
        return len(self) > 0
