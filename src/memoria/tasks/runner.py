"""In-process fire-and-forget job runner."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

from memoria.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _LoopThread:
    loop: asyncio.AbstractEventLoop
    thread: threading.Thread


class BackgroundRunner:
    """Runs jobs off the caller's path with bounded concurrency.

    Jobs scheduled from a coroutine run on the caller's event loop; jobs
    scheduled from synchronous code run on a private daemon loop thread.
    A job's exception is logged and never reaches the submitter.
    """

    def __init__(self, max_concurrent: int | None = None) -> None:
        settings = get_settings()
        limit = max_concurrent or int(settings.task_runner_max_concurrent)
        self._max_concurrent = max(1, limit)
        self._semaphores: dict[asyncio.AbstractEventLoop, asyncio.Semaphore] = {}
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._loop_thread: _LoopThread | None = None

    @property
    def in_flight(self) -> int:
        return len(self._background_tasks)

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def submit(self, name: str, func: Callable[..., Any], **kwargs: Any) -> bool:
        """Schedule ``func(**kwargs)`` and return at once. False if it was not queued."""
        if self._closed.is_set():
            logger.warning("Background runner is shut down; dropping job %s", name)
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return self._submit_from_sync(name, func, kwargs)
        self._schedule_on_loop(loop, name, func, kwargs)
        return True

    async def drain(self, timeout_s: float = 5.0) -> None:
        """Wait for jobs running on the current loop to finish."""
        loop = asyncio.get_running_loop()
        pending = [task for task in self._background_tasks if task.get_loop() is loop]
        if pending:
            await asyncio.wait(pending, timeout=timeout_s)

    def cancel(self, name_prefix: str) -> int:
        """Cancel in-flight jobs whose name starts with ``name_prefix``; the runner stays open."""
        cancelled = 0
        for task in list(self._background_tasks):
            if task.done() or not task.get_name().startswith(name_prefix):
                continue
            task_loop = task.get_loop()
            if task_loop.is_closed():
                continue
            task_loop.call_soon_threadsafe(task.cancel)
            cancelled += 1
        if cancelled:
            logger.info("Cancelled %d background jobs matching %s", cancelled, name_prefix)
        return cancelled

    async def shutdown(self, timeout_s: float = 0.0, *, abandon: bool = True) -> None:
        """Stop accepting jobs.

        With ``abandon`` in-flight jobs are cancelled straight away; otherwise
        they get ``timeout_s`` seconds to finish before being cancelled.
        """
        self._closed.set()
        tasks = list(self._background_tasks)
        current = asyncio.get_running_loop()
        local = [task for task in tasks if task.get_loop() is current]
        if local and not abandon:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*local, return_exceptions=True),
                    timeout=max(0.1, float(timeout_s)),
                )
            except TimeoutError:
                logger.warning("Background runner shutdown timed out with %d jobs", len(tasks))
        for task in list(self._background_tasks):
            task_loop = task.get_loop()
            if not task.done() and not task_loop.is_closed():
                task_loop.call_soon_threadsafe(task.cancel)
        if tasks and abandon:
            logger.info("Abandoned %d background jobs on shutdown", len(tasks))
        with self._lock:
            loop_thread = self._loop_thread
            self._loop_thread = None
        if loop_thread is not None:
            loop_thread.loop.call_soon_threadsafe(loop_thread.loop.stop)
            loop_thread.thread.join(timeout=2)

    def _submit_from_sync(
        self, name: str, func: Callable[..., Any], payload: dict[str, Any]
    ) -> bool:
        loop_thread = self._ensure_loop_thread()
        fut: Future[None] = asyncio.run_coroutine_threadsafe(
            self._schedule_in_loop(name, func, payload),
            loop_thread.loop,
        )
        try:
            fut.result(timeout=2.0)
            return True
        except Exception:
            logger.exception("Failed to enqueue job %s", name)
            return False

    async def _schedule_in_loop(
        self, name: str, func: Callable[..., Any], payload: dict[str, Any]
    ) -> None:
        self._schedule_on_loop(asyncio.get_running_loop(), name, func, payload)

    def _schedule_on_loop(
        self,
        loop: asyncio.AbstractEventLoop,
        name: str,
        func: Callable[..., Any],
        payload: dict[str, Any],
    ) -> None:
        task = loop.create_task(self._execute(loop, name, func, payload), name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _semaphore_for(self, loop: asyncio.AbstractEventLoop) -> asyncio.Semaphore:
        # A semaphore is bound to the loop that first waits on it.
        with self._lock:
            semaphore = self._semaphores.get(loop)
            if semaphore is None:
                semaphore = asyncio.Semaphore(self._max_concurrent)
                self._semaphores[loop] = semaphore
            return semaphore

    async def _execute(
        self,
        loop: asyncio.AbstractEventLoop,
        name: str,
        func: Callable[..., Any],
        payload: dict[str, Any],
    ) -> None:
        async with self._semaphore_for(loop):
            try:
                if inspect.iscoroutinefunction(func):
                    await func(**payload)
                    return
                result = await asyncio.to_thread(func, **payload)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                logger.debug("Job cancelled: %s", name)
                raise
            except Exception:
                logger.exception("Job failed: %s", name)

    def _ensure_loop_thread(self) -> _LoopThread:
        with self._lock:
            current = self._loop_thread
            if current is not None and current.thread.is_alive():
                return current

            loop = asyncio.new_event_loop()

            def _run() -> None:
                asyncio.set_event_loop(loop)
                loop.run_forever()

            thread = threading.Thread(target=_run, name="memoria-background", daemon=True)
            thread.start()
            self._loop_thread = _LoopThread(loop=loop, thread=thread)
            return self._loop_thread
