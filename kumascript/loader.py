"""
Template loader and unit interfaces.
Path: kumascript/loader.py

How templates are stored and fetched is up to the embedding service; the
runtime only needs something that resolves a name to an executable unit.
``DictLoader`` and ``ScriptTemplate`` cover in-process templates written as
Python callables.
"""

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Protocol, Union, runtime_checkable

from kumascript.errors import TemplateNotFoundError
from kumascript.utils.logging import get_logger

if TYPE_CHECKING:
    from kumascript.context import ExecutionContext

logger = get_logger()


@runtime_checkable
class TemplateUnit(Protocol):
    """An executable template"""

    async def execute(self, args: List[Any], context: "ExecutionContext") -> str:
        """
        Execute the template.

        Args:
            args: Positional macro arguments
            context: Child context with arguments already set

        Returns:
            Output text
        """
        ...


@runtime_checkable
class TemplateLoader(Protocol):
    """Resolves template names to executable units"""

    async def resolve(self, name: str) -> TemplateUnit:
        """Resolve a name, raising on failure (e.g. TemplateNotFoundError)."""
        ...


class ScriptTemplate:
    """
    Template whose body is a blocking Python callable ``fn(context) -> str``.

    The body runs on its own thread, so it may call ``context.template``,
    ``context.require`` and ``context.cache_fn`` as plain function calls.
    """

    def __init__(self, fn: Callable[["ExecutionContext"], Any], name: Optional[str] = None):
        self.fn = fn
        self.name = name or getattr(fn, "__name__", "script")

    async def execute(self, args: List[Any], context: "ExecutionContext") -> str:
        output = await context.bridge.run_in_thread(self.fn, context)
        return "" if output is None else str(output)

    def __repr__(self) -> str:
        return f"ScriptTemplate({self.name!r})"


class DictLoader:
    """In-memory template registry."""

    def __init__(self, templates: Optional[Dict[str, Union[TemplateUnit, Callable]]] = None):
        self._templates: Dict[str, TemplateUnit] = {}
        for name, unit in (templates or {}).items():
            self.register(name, unit)

    def register(self, name: str, unit: Union[TemplateUnit, Callable]) -> TemplateUnit:
        """
        Register a template under name.

        Args:
            name: Template name
            unit: A TemplateUnit, or a callable wrapped as a ScriptTemplate

        Returns:
            The registered unit
        """
        if not isinstance(unit, TemplateUnit):
            if not callable(unit):
                raise TypeError(f"Template '{name}' must be a TemplateUnit or callable, got {type(unit).__name__}")
            unit = ScriptTemplate(unit, name)
        if name in self._templates:
            logger.warning("loader.overwriting_template", name=name)
        self._templates[name] = unit
        return unit

    def __contains__(self, name: str) -> bool:
        return name in self._templates

    async def resolve(self, name: str) -> TemplateUnit:
        unit = self._templates.get(name)
        if unit is None:
            raise TemplateNotFoundError(name)
        return unit
