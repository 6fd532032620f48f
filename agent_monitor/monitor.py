"""Serialized reload orchestration: watcher signals, dwell ticks and async enrichment."""

import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from watchfiles import awatch

from .dwell import DWELL_TICK_SECONDS
from .models import ReloadResult, SessionSnapshot
from .notifier import Notifier
from .registry import SessionRegistry
from .tab_titles import TabTitleResolver

logger = logging.getLogger(__name__)

Listener = Callable[[ReloadResult], Awaitable[None]]


class SessionMonitor:
    """
    Runs every registry mutation on one worker task.

    Directory-change signals, the periodic dwell tick, API mutations and
    late-arriving tab titles are all queued onto the same worker, so the
    registry is never read and replaced by two passes at once.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        notifier: Optional[Notifier] = None,
        tab_resolver: Optional[TabTitleResolver] = None,
        tick_interval: float = DWELL_TICK_SECONDS,
        watch_debounce_ms: int = 300,
        notify_on_startup: bool = True,
        watch: bool = True,
    ):
        self.registry = registry
        self.notifier = notifier
        self.tab_resolver = tab_resolver
        self.tick_interval = tick_interval
        self.watch_debounce_ms = watch_debounce_ms
        self.notify_on_startup = notify_on_startup
        self.watch = watch

        self._queue: asyncio.Queue = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []
        self._background: set[asyncio.Task] = set()
        self._listeners: List[Listener] = []
        self._stop_event = asyncio.Event()
        self._running = False
        self._primed = False
        self._reload_pending = False
        self._resolved_pids: Dict[str, int] = {}

    @property
    def snapshot(self) -> SessionSnapshot:
        return self.registry.snapshot

    @property
    def is_running(self) -> bool:
        return self._running

    def add_listener(self, callback: Listener):
        """Register an async callback invoked after each reload, tick or title merge."""
        self._listeners.append(callback)

    async def start(self):
        """Start the worker, tick and watcher tasks, then run the first reload."""
        if self._running:
            logger.warning("Session monitor already running")
            return

        self._running = True
        self._stop_event.clear()
        self._tasks.append(asyncio.create_task(self._worker_loop()))
        self._tasks.append(asyncio.create_task(self._tick_loop()))
        if self.watch:
            self._tasks.append(asyncio.create_task(self._watch_loop()))

        try:
            await self.reload()
        except Exception as e:
            logger.error(f"Initial reload failed: {e}")
        logger.info(f"Session monitor started for {self.registry.log_dir}")

    async def stop(self):
        """Stop all tasks. Queued jobs are cancelled so their callers return."""
        self._running = False
        self._stop_event.set()
        background = list(self._background)
        for task in self._tasks + background:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

        # Nothing will run what is left in the queue now
        dropped = 0
        while not self._queue.empty():
            _, _, future = self._queue.get_nowait()
            if not future.done():
                future.cancel()
            self._queue.task_done()
            dropped += 1
        self._reload_pending = False
        if dropped:
            logger.info(f"Cancelled {dropped} queued monitor jobs")

        await asyncio.gather(*background, return_exceptions=True)
        logger.info("Session monitor stopped")

    # Serialized execution

    def _enqueue(self, fn: Callable, *args: Any) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((fn, args, future))
        return future

    async def submit(self, fn: Callable, *args: Any) -> Any:
        """Run ``fn(*args)`` on the worker and return its result."""
        return await self._enqueue(fn, *args)

    async def _worker_loop(self):
        while True:
            fn, args, future = await self._queue.get()
            try:
                result = fn(*args)
                if inspect.isawaitable(result):
                    result = await result
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                raise
            except Exception as e:
                logger.error(f"Monitor job {getattr(fn, '__name__', fn)} failed: {e}")
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._queue.task_done()

    # Reload

    async def reload(self) -> ReloadResult:
        """Reload now (serialized) and return the result."""
        return await self.submit(self._do_reload)

    def request_reload(self):
        """Queue a reload unless one is already waiting to run."""
        if self._reload_pending:
            return
        self._reload_pending = True
        future = self._enqueue(self._do_reload)
        future.add_done_callback(self._log_failed_request)

    @staticmethod
    def _log_failed_request(future: asyncio.Future):
        if not future.cancelled() and future.exception() is not None:
            logger.warning(f"Requested reload failed, keeping previous snapshot: {future.exception()}")

    async def _do_reload(self) -> ReloadResult:
        self._reload_pending = False
        now = datetime.now()
        # Disk IO off the event loop; the snapshot swap stays on the worker
        folds = await asyncio.to_thread(self.registry.scan, now)
        result = self.registry.apply_scan(folds, now)

        if result.attention and self.notifier:
            if self._primed or self.notify_on_startup:
                self._track(*self.notifier.dispatch(result.attention))
            else:
                logger.info(f"Startup: skipping {len(result.attention)} notifications")
        self._primed = True

        self._schedule_tab_titles(result.snapshot)
        await self._emit(result)
        return result

    # Dwell tick

    async def tick(self) -> ReloadResult:
        return await self.submit(self._do_tick)

    async def _do_tick(self) -> ReloadResult:
        result = self.registry.tick()
        if result.changed:
            await self._emit(result)
        return result

    async def _tick_loop(self):
        while self._running:
            await asyncio.sleep(self.tick_interval)
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Dwell tick failed: {e}")

    # Watcher

    async def _watch_loop(self):
        """Request a reload for each batch of directory changes."""
        log_dir = self.registry.log_dir
        while self._running:
            try:
                log_dir.mkdir(parents=True, exist_ok=True)
                async for changes in awatch(
                    log_dir,
                    debounce=self.watch_debounce_ms,
                    stop_event=self._stop_event,
                    recursive=False,
                ):
                    logger.debug(f"{len(changes)} changes in {log_dir}")
                    self.request_reload()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Watcher error on {log_dir}: {e}, retrying")
                await asyncio.sleep(1.0)
            else:
                # awatch returns when stop_event is set
                break

    # Tab titles

    def _schedule_tab_titles(self, snapshot: SessionSnapshot):
        if not self.tab_resolver:
            return
        for session_id in list(self._resolved_pids):
            if session_id not in snapshot:
                del self._resolved_pids[session_id]

        for record in snapshot.records.values():
            pid = record.agent_pid
            if not pid or self._resolved_pids.get(record.session_id) == pid:
                continue
            self._resolved_pids[record.session_id] = pid
            self._track(asyncio.create_task(self._resolve_tab_title(record.session_id, pid)))

    async def _resolve_tab_title(self, session_id: str, pid: int):
        try:
            title = await asyncio.to_thread(self.tab_resolver.resolve, pid)
        except Exception as e:
            logger.warning(f"Tab title lookup failed for pid {pid}: {e}")
            return
        if title:
            await self.submit(self._merge_tab_titles, {session_id: title})

    async def _merge_tab_titles(self, titles: Dict[str, str]) -> bool:
        updated = self.registry.apply_tab_titles(titles)
        if updated:
            await self._emit(ReloadResult(snapshot=self.registry.snapshot))
        else:
            logger.debug(f"Dropped stale tab titles for {list(titles)}")
        return updated

    # Helpers

    def _track(self, *tasks: asyncio.Task):
        for task in tasks:
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _emit(self, result: ReloadResult):
        for listener in self._listeners:
            try:
                await listener(result)
            except Exception as e:
                logger.error(f"Snapshot listener failed: {e}")
