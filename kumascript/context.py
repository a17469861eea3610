"""
Execution context for KumaScript templates.
Path: kumascript/context.py

An ExecutionContext is the flat namespace a template script sees: installed
sub-APIs, environment variables, positional arguments and the calls that
reach other templates. ``template``, ``require`` and ``cache_fn`` look like
plain blocking calls to the script, but each one suspends only the calling
script thread while the loader and cache work runs on the bridge's event
loop.

Every nested ``template``/``require`` call runs against a child derived from
its caller. Children copy the namespace but share the loader, cache client,
error sink and require cache with the whole lineage.
"""

import asyncio
import inspect
import types
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type

import requests

from kumascript.aliasing import set_case_variant_aliases
from kumascript.api import BaseAPI, KumaAPI, PageAPI
from kumascript.bridge import Bridge
from kumascript.cache import CacheClient, create_cache_client
from kumascript.config import ConfigNode, DEFAULT_SERVER_OPTIONS, deep_merge, validate_server_options
from kumascript.errors import (
    ErrorSink,
    SuspendedCallTimeout,
    TemplateError,
    TemplateExecutionError,
    TemplateLoadingError,
)
from kumascript.loader import TemplateLoader
from kumascript.utils.logging import get_logger

logger = get_logger()

# $0..$98 always exist, even when fewer arguments are passed
ARGUMENT_SLOTS = 99

DEFAULT_APIS: Dict[str, Type[BaseAPI]] = {
    "kuma": KumaAPI,
    "page": PageAPI
}


class _RequireEntry:
    """A require() of one template within a lineage, finished or in flight."""

    def __init__(self, exports: Dict[str, Any]):
        self.exports = exports
        self.task: Optional[asyncio.Task] = None


class ExecutionContext:
    """Namespace and call surface for one template evaluation."""

    def __init__(
        self,
        loader: Optional[TemplateLoader] = None,
        server_options: Optional[Dict[str, Any]] = None,
        env: Optional[Mapping[str, Any]] = None,
        apis: Optional[Mapping[str, Type[BaseAPI]]] = None,
        cache: Optional[CacheClient] = None,
        bridge: Optional[Bridge] = None
    ):
        """
        Initialize a top-level context.

        Args:
            loader: Template loader used by template() and require()
            server_options: Server options (see kumascript.config)
            env: Environment variables, exposed read-only as ``env``
            apis: Sub-API classes to install, by namespace name
            cache: Cache client; built from server_options if not given
            bridge: Bridge to suspend on; the process-wide one if not given
        """
        self.context_id = f"ctx-{uuid.uuid4()}"
        self.server_options = validate_server_options(deep_merge(DEFAULT_SERVER_OPTIONS, server_options or {}))
        self.options = ConfigNode(self.server_options)
        self.loader = loader
        self.env = types.MappingProxyType(dict(env or {}))
        self.bridge = bridge if bridge is not None else Bridge.default()
        self.cache = cache if cache is not None else create_cache_client(self.server_options)
        self.errors = ErrorSink()
        self.namespace: Dict[str, Any] = {
            "env": self.env,
            "BaseAPI": BaseAPI,
            "request": requests
        }
        self._require_cache: Dict[str, _RequireEntry] = {}
        # Path of the require() this context is running, and which paths each in-flight require waits on
        self._require_path: Optional[str] = None
        self._require_waits: Dict[str, List[str]] = {}

        for name, kind in (DEFAULT_APIS if apis is None else apis).items():
            self.install_api(kind, name)
        self.set_arguments([])

        logger.debug("context.initialized",
                     context_id=self.context_id,
                     cache_backend=type(self.cache).__name__,
                     autorequire=len(self.options.get_value("autorequire") or {}))

    # Namespace access

    def __getattr__(self, name: str) -> Any:
        namespace = self.__dict__.get("namespace")
        if namespace is not None and name in namespace:
            return namespace[name]
        raise AttributeError(f"'{type(self).__name__}' has no attribute or namespace entry '{name}'")

    def __getitem__(self, name: str) -> Any:
        return self.namespace[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self.namespace[name] = value

    def __contains__(self, name: str) -> bool:
        return name in self.namespace

    def get(self, name: str, default: Any = None) -> Any:
        return self.namespace.get(name, default)

    def set_vars(self, vars: Mapping[str, Any]) -> None:
        """Install each entry of vars into the namespace under its case-variant aliases."""
        for name, value in vars.items():
            set_case_variant_aliases(self.namespace, name, value)

    def derive(self) -> "ExecutionContext":
        """
        Create a child context for a nested call.

        The child gets its own copy of the namespace and shares everything
        else (loader, cache, bridge, error sink, require cache) with this one.
        """
        child = ExecutionContext.__new__(type(self))
        child.__dict__.update(self.__dict__)
        child.namespace = dict(self.namespace)
        return child

    @property
    def call_timeout(self) -> Optional[float]:
        return self.options.get_value("call_timeout")

    # Sub-APIs

    def install_api(self, kind: Type[BaseAPI], name: str) -> BaseAPI:
        """
        Install a new instance of the given API class under name.

        Args:
            kind: BaseAPI subclass to instantiate with this context as parent
            name: Namespace name to install under

        Returns:
            The installed API instance
        """
        api = kind(self)
        set_case_variant_aliases(self.namespace, name, api)
        logger.debug("context.api_installed", name=name, kind=kind.__name__)
        return api

    def build_api(self, definition: Mapping[str, Any], name: str = "BuiltAPI") -> BaseAPI:
        """
        Build an ad-hoc API from a plain definition without installing it.

        Functions in the definition become methods and receive the API as
        their first argument; other entries become fields. Handy together
        with autorequire, where a required template exports a built API.

        Args:
            definition: Mapping of member names to functions or values
            name: Class name for the generated API type

        Returns:
            New API instance bound to this context
        """
        kind = type(name, (BaseAPI,), dict(definition))
        return kind(self)

    # Arguments

    def set_arguments(self, args: Optional[Sequence[Any]] = None) -> "ExecutionContext":
        """
        Make macro arguments available as $0..$n, ``arguments`` and ``$$``.

        Args:
            args: Positional macro arguments

        Returns:
            This context, for chaining
        """
        args = list(args) if args is not None else []
        for i in range(ARGUMENT_SLOTS):
            self.namespace[f"${i}"] = ""
        for i, value in enumerate(args):
            self.namespace[f"${i}"] = value
        self.namespace["arguments"] = self.namespace["$$"] = args
        return self

    # template()

    def template(self, name: str, args: Optional[Sequence[Any]] = None) -> str:
        """
        Load and execute a template with the given arguments.

        Failures never raise here: they are recorded in ``errors`` and the
        call returns empty output.

        Args:
            name: Template name
            args: Positional arguments for the template

        Returns:
            Template output, or "" on failure
        """
        return self.bridge.call(self.template_async(name, args),
                                timeout=self.call_timeout,
                                operation=f"template:{name}")

    async def template_async(self, name: str, args: Optional[Sequence[Any]] = None) -> str:
        output, _ = await self._run_template(name, args)
        return output

    async def _run_template(self, name: str, args: Optional[Sequence[Any]]) -> Tuple[str, Optional[TemplateError]]:
        args = list(args or [])
        try:
            if self.loader is None:
                raise RuntimeError("No template loader configured")
            unit = await self._with_deadline(self.loader.resolve(name), f"resolve:{name}")
        except Exception as e:
            return "", self._record(TemplateLoadingError(name, e))

        child = self.derive().set_arguments(args)
        try:
            output = await self._with_deadline(unit.execute(args, child), f"execute:{name}")
        except Exception as e:
            return "", self._record(TemplateExecutionError(name, e))

        logger.debug("context.template.executed", template=name, args=len(args))
        return ("" if output is None else output), None

    async def _with_deadline(self, awaitable: Awaitable[Any], operation: str) -> Any:
        timeout = self.options.get_value("template_timeout")
        if not timeout:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError:
            raise SuspendedCallTimeout(timeout, operation) from None

    def _record(self, error: TemplateError) -> TemplateError:
        self.errors.append(error)
        logger.error("context.template.failed",
                     kind=error.kind,
                     template=error.name,
                     error=str(error.error),
                     error_type=type(error.error).__name__)
        return error

    # require()

    def require(self, path: str) -> Dict[str, Any]:
        """
        Load a template for its exports rather than its output.

        The template runs against a child context holding a fresh ``exports``
        container (also reachable as ``module["exports"]``); its output is
        discarded. Results are cached for the lineage, so a template's side
        effects run at most once per rendering.

        Args:
            path: Template name

        Returns:
            The export container the template populated
        """
        return self.bridge.call(self.require_async(path),
                                timeout=self.call_timeout,
                                operation=f"require:{path}")

    async def require_async(self, path: str) -> Dict[str, Any]:
        entry = self._require_cache.get(path)
        if entry is None:
            entry = self._start_require(path)
        elif not entry.task.done() and self._closes_cycle(path):
            # Waiting would deadlock: hand back the container still being populated
            logger.warning("context.require.cycle", path=path, requester=self._require_path)
            return entry.exports
        return await self._await_require(path, entry)

    def _start_require(self, path: str) -> _RequireEntry:
        exports: Dict[str, Any] = {}
        child = self.derive()
        child._require_path = path
        module = {"exports": exports}
        child.namespace["module"] = module
        child.namespace["exports"] = exports

        entry = _RequireEntry(exports)
        # Owned by the entry, so a requester's deadline cancels only its own wait
        entry.task = asyncio.get_running_loop().create_task(child._load_required(path, entry, module))
        self._require_cache[path] = entry
        return entry

    async def _load_required(self, path: str, entry: _RequireEntry, module: Dict[str, Any]) -> Any:
        try:
            _, error = await self._run_template(path, [])
        except asyncio.CancelledError:
            self._forget_require(path, entry)
            raise

        result = module["exports"]
        if error is not None:
            # Not cached, so the next require() retries
            self._forget_require(path, entry)
            logger.warning("context.require.failed", path=path, kind=error.kind)
        else:
            logger.debug("context.require.cached", path=path, exports=len(result) if hasattr(result, "__len__") else None)
        return result

    async def _await_require(self, path: str, entry: _RequireEntry) -> Any:
        requester = self._require_path
        if requester is None:
            return await asyncio.shield(entry.task)
        waits = self._require_waits.setdefault(requester, [])
        waits.append(path)
        try:
            return await asyncio.shield(entry.task)
        finally:
            waits.remove(path)
            if not waits:
                self._require_waits.pop(requester, None)

    def _closes_cycle(self, path: str) -> bool:
        """True if path is, directly or through other requires, waiting on this context's require."""
        requester = self._require_path
        if requester is None:
            return False
        pending = [path]
        seen = set()
        while pending:
            current = pending.pop()
            if current == requester:
                return True
            if current in seen:
                continue
            seen.add(current)
            pending.extend(self._require_waits.get(current, ()))
        return False

    def _forget_require(self, path: str, entry: _RequireEntry) -> None:
        if self._require_cache.get(path) is entry:
            del self._require_cache[path]

    # cache_fn()

    def cache_fn(self, key: str, ttl: Optional[float], compute: Callable[..., Any]) -> Any:
        """
        Cache the result of a computation.

        ``compute`` receives a completion callback and must call it exactly
        once with the value, e.g. ``lambda done: done(expensive())``. A
        coroutine function is awaited instead. On a miss the value is stored
        under key for ttl seconds; concurrent misses for one key share a
        single computation.

        Args:
            key: Cache key
            ttl: Expiry in seconds for a freshly computed value
            compute: Callback-style or coroutine function producing the value

        Returns:
            Cached or freshly computed value
        """
        return self.bridge.call(self.cache_fn_async(key, ttl, compute),
                                timeout=self.call_timeout,
                                operation=f"cache_fn:{key}")

    async def cache_fn_async(self, key: str, ttl: Optional[float], compute: Callable[..., Any]) -> Any:
        async def produce() -> Any:
            if inspect.iscoroutinefunction(compute):
                return await compute()
            return await self.bridge.await_completion(compute, operation=f"cache_fn:{key}")

        return await self.cache.read_through(key, ttl, produce)

    # Auto-require

    def perform_auto_require(self, on_done: Optional[Callable[[Optional[BaseException]], Any]] = None) -> None:
        """
        Require the configured templates and install their exports as APIs.

        Args:
            on_done: Optional callback, called with None on success or with
                the error; without it, errors are raised
        """
        error = None
        if self.options.get_value("autorequire"):
            try:
                self.bridge.call(self.perform_auto_require_async(),
                                 timeout=self.call_timeout,
                                 operation="autorequire")
            except Exception as e:
                if on_done is None:
                    raise
                error = e
        if on_done is not None:
            on_done(error)

    async def perform_auto_require_async(self) -> None:
        autorequire = self.options.get_value("autorequire") or {}
        if not autorequire:
            return

        semaphore = asyncio.Semaphore(max(1, int(self.options.get_value("autorequire_concurrency") or 1)))

        async def _install(install_name: str, template_name: str) -> None:
            async with semaphore:
                exports = await self.require_async(template_name)
            set_case_variant_aliases(self.namespace, install_name, exports)

        logger.info("context.autorequire.starting", context_id=self.context_id, count=len(autorequire))
        await asyncio.gather(*(_install(install_name, template_name)
                               for install_name, template_name in autorequire.items()))
        logger.info("context.autorequire.complete", context_id=self.context_id, count=len(autorequire))

    def close(self) -> None:
        """Release the cache client's connections."""
        self.bridge.call(self.cache.close(), timeout=self.call_timeout, operation="cache_close")
