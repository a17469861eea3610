"""
Synchronous facade over asynchronous template I/O.
Path: kumascript/bridge.py

Template scripts are written as ordinary blocking code: ``ctx.template(...)``
just returns a string. Underneath, cache round-trips and template loading run
as coroutines on one persistent event loop owned by a daemon thread, and each
script body runs on its own thread. A script that issues a call blocks only
its own thread until the loop delivers the result, so sibling scripts and the
loop itself keep making progress, and nested calls each get their own
suspension/resumption pair.
"""

import asyncio
import concurrent.futures
import inspect
import itertools
import threading
from typing import Any, Awaitable, Callable, Optional

from kumascript.errors import CompletionError, SuspendedCallTimeout
from kumascript.utils.logging import get_logger

logger = get_logger()

_script_thread_ids = itertools.count(1)


class LoopThread:
    """Daemon thread owning a persistent asyncio event loop."""

    def __init__(self, name: str = "kumascript-loop"):
        self.name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()

    def start(self) -> "LoopThread":
        """Start the loop thread if it is not already running."""
        if self._thread is not None and self._thread.is_alive():
            return self
        self._ready.clear()
        self._thread = threading.Thread(target=self._run_loop, name=self.name, daemon=True)
        self._thread.start()
        if not self._ready.wait(timeout=5.0):
            raise RuntimeError(f"Event loop thread '{self.name}' failed to start")
        logger.debug("bridge.loop_started", thread=self.name)
        return self

    def _run_loop(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        loop.call_soon(self._ready.set)
        try:
            loop.run_forever()
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            logger.debug("bridge.loop_stopped", thread=self.name, cancelled_tasks=len(pending))

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None or self._loop.is_closed():
            raise RuntimeError(f"Event loop thread '{self.name}' is not running")
        return self._loop

    @property
    def running(self) -> bool:
        return self._loop is not None and not self._loop.is_closed() and self._loop.is_running()

    def is_current(self) -> bool:
        """True when called from the loop thread itself."""
        return self._thread is not None and threading.current_thread() is self._thread

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop, cancel outstanding work and join the thread."""
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread is not None and not self.is_current():
            self._thread.join(timeout=timeout)


class Completion:
    """
    Single-shot completion signal for a callback-style operation.

    Call it with the result, or call ``fail(error)``. It may be fired from any
    thread, but only once: a second firing raises ``CompletionError``.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, future: asyncio.Future, operation: str = "operation"):
        self.operation = operation
        self._loop = loop
        self._future = future
        self._fired = False
        self._lock = threading.Lock()

    @property
    def fired(self) -> bool:
        return self._fired

    def __call__(self, value: Any = None) -> None:
        self._claim()
        self._deliver(self._set_result, value)

    def fail(self, error: BaseException) -> None:
        self._claim()
        self._deliver(self._set_exception, error)

    def _claim(self) -> None:
        with self._lock:
            if self._fired:
                logger.error("bridge.completion_fired_twice", operation=self.operation)
                raise CompletionError(f"Completion for {self.operation} fired more than once")
            self._fired = True

    def _deliver(self, setter: Callable[[Any], None], payload: Any) -> None:
        try:
            on_loop = asyncio.get_running_loop() is self._loop
        except RuntimeError:
            on_loop = False
        if on_loop:
            setter(payload)
        else:
            self._loop.call_soon_threadsafe(setter, payload)

    def _set_result(self, value: Any) -> None:
        # The waiter may already have been cancelled by a deadline
        if not self._future.done():
            self._future.set_result(value)

    def _set_exception(self, error: BaseException) -> None:
        if not self._future.done():
            self._future.set_exception(error)


class Bridge:
    """
    Lets blocking script code wait on coroutines running on the loop thread.

    A process-wide instance is available through ``Bridge.default()``; tests
    and embedders can own their own and ``close()`` it.
    """
    _default = None
    _default_lock = threading.Lock()

    def __init__(self, loop_thread: Optional[LoopThread] = None, timeout: Optional[float] = None):
        """
        Initialize the bridge.

        Args:
            loop_thread: Loop thread to run coroutines on (created if not given)
            timeout: Default deadline in seconds for ``call``; None waits forever
        """
        self.loop_thread = loop_thread or LoopThread()
        self.timeout = timeout

    @classmethod
    def default(cls) -> "Bridge":
        """Get the lazily started process-wide bridge."""
        with cls._default_lock:
            if cls._default is None or not cls._default.loop_thread.running:
                cls._default = cls().start()
            return cls._default

    def start(self) -> "Bridge":
        self.loop_thread.start()
        return self

    def close(self) -> None:
        self.loop_thread.stop()

    def __enter__(self) -> "Bridge":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self.loop_thread.loop

    def call(self, awaitable: Awaitable[Any], timeout: Optional[float] = None, operation: str = "call") -> Any:
        """
        Run an awaitable on the loop and block the calling thread for its result.

        Args:
            awaitable: Coroutine or other awaitable to run
            timeout: Deadline in seconds, overriding the bridge default
            operation: Label used in logs and timeout errors

        Returns:
            The awaitable's result

        Raises:
            SuspendedCallTimeout: If the deadline expires first
            RuntimeError: If called from the loop thread, which would deadlock
            Exception: Whatever the awaitable raised
        """
        if self.loop_thread.is_current():
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise RuntimeError(f"Cannot suspend {operation} on the event loop thread; await it instead")

        deadline = timeout if timeout is not None else self.timeout
        future = asyncio.run_coroutine_threadsafe(_as_coroutine(awaitable), self.loop)
        try:
            return future.result(timeout=deadline)
        except concurrent.futures.TimeoutError:
            if future.done():
                # The operation itself failed with a timeout
                raise
            future.cancel()
            logger.warning("bridge.call_timed_out", operation=operation, timeout=deadline)
            raise SuspendedCallTimeout(deadline, operation) from None

    async def await_completion(self, start: Callable[[Completion], Any], operation: str = "operation") -> Any:
        """
        Await a callback-style operation.

        ``start`` runs on its own thread and receives a ``Completion`` it must
        fire exactly once, either before returning or later from any thread.
        If ``start`` raises before firing, the error is delivered instead.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        completion = Completion(loop, future, operation)

        def _start() -> None:
            try:
                start(completion)
            except Exception as e:
                if not completion.fired:
                    completion.fail(e)
                elif not isinstance(e, CompletionError):
                    logger.error("bridge.completion_start_failed_after_fire",
                                 operation=operation, error=str(e), error_type=type(e).__name__)

        self._spawn(_start, operation)
        return await future

    async def run_in_thread(self, fn: Callable[..., Any], *args: Any) -> Any:
        """
        Run blocking script code on its own thread and await its return value.

        Each script gets a dedicated thread, so arbitrarily deep nesting of
        template calls cannot exhaust a worker pool.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def _target() -> None:
            try:
                result = fn(*args)
            except Exception as e:
                _settle_threadsafe(loop, future, error=e)
            else:
                _settle_threadsafe(loop, future, result=result)

        self._spawn(_target, getattr(fn, "__name__", "script"))
        return await future

    def _spawn(self, target: Callable[[], None], label: str) -> threading.Thread:
        thread = threading.Thread(
            target=target,
            name=f"kumascript-script-{next(_script_thread_ids)}",
            daemon=True
        )
        logger.debug("bridge.thread_spawned", thread=thread.name, label=label)
        thread.start()
        return thread


async def _as_coroutine(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


def _settle_threadsafe(loop: asyncio.AbstractEventLoop, future: asyncio.Future,
                       result: Any = None, error: Optional[BaseException] = None) -> None:
    def _settle() -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    try:
        loop.call_soon_threadsafe(_settle)
    except RuntimeError:
        logger.warning("bridge.loop_closed_before_settle", error=str(error) if error else None)
