"""
KumaScript template runtime.

Hosts the execution context that template scripts run against: namespaced
helper APIs, a shared result cache, and blocking-style ``template``,
``require`` and ``cache_fn`` calls over asynchronous loader and cache I/O.
"""

from .aliasing import set_case_variant_aliases
from .api import BaseAPI, KumaAPI, PageAPI
from .bridge import Bridge, Completion, LoopThread
from .cache import MISSING, CacheClient, MemoryCache, RedisCache, SingleFlight, create_cache_client
from .context import ExecutionContext
from .errors import (
    CacheError,
    CompletionError,
    ConfigValidationError,
    ErrorSink,
    KumaScriptError,
    SuspendedCallTimeout,
    TemplateError,
    TemplateExecutionError,
    TemplateLoadingError,
    TemplateNotFoundError,
)
from .loader import DictLoader, ScriptTemplate, TemplateLoader, TemplateUnit

__all__ = [
    'set_case_variant_aliases',
    'BaseAPI', 'KumaAPI', 'PageAPI',
    'Bridge', 'Completion', 'LoopThread',
    'MISSING', 'CacheClient', 'MemoryCache', 'RedisCache', 'SingleFlight', 'create_cache_client',
    'ExecutionContext',
    'CacheError', 'CompletionError', 'ConfigValidationError', 'ErrorSink', 'KumaScriptError',
    'SuspendedCallTimeout', 'TemplateError', 'TemplateExecutionError', 'TemplateLoadingError',
    'TemplateNotFoundError',
    'DictLoader', 'ScriptTemplate', 'TemplateLoader', 'TemplateUnit',
]
