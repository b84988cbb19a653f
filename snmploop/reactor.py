"""
Reactors with a prepare / poll / check iteration model.

A reactor iteration runs in three phases:

1. prepare hooks run before blocking; they start io watchers and timers for
   whatever they are waiting on
2. the reactor polls until a watched descriptor is readable or the nearest
   timer expires; ready watchers are flagged pending
3. check hooks run after polling; they consume pending flags with
   clear_pending() / timer_stop(). Watchers still pending afterwards get
   their own callback invoked (if they have one).

Two implementations share this model:

- SelectorReactor: a self-contained loop on selectors.DefaultSelector. It can
  be run from anywhere, including from inside a running asyncio callback,
  which makes it the private loop for blocking calls.
- AsyncioReactor: an adapter onto an externally owned asyncio loop. Polling
  is delegated to the asyncio loop (add_reader / call_later wake-ups); a
  single deduplicated call_soon pass runs the check hooks and then the next
  prepare.

Neither is thread-safe: all calls for one reactor must happen on the thread
that drives it.
"""

import asyncio
import logging
import selectors
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

Hook = Callable[[], None]
ExceptionHandler = Callable[[str, BaseException], None]


class IoWatcher:
    """Read-readiness watcher for one descriptor."""

    __slots__ = ("fd", "callback", "pending", "active")

    def __init__(self, fd: int, callback: Optional[Callable[["IoWatcher"], None]] = None):
        self.fd = fd
        self.callback = callback
        self.pending = False
        self.active = False

    def clear_pending(self) -> bool:
        """Return whether the descriptor became readable, clearing the flag."""
        was_pending = self.pending
        self.pending = False
        return was_pending

    def __repr__(self):
        return f"IoWatcher(fd={self.fd}, active={self.active}, pending={self.pending})"


class TimerWatcher:
    """One-shot timer."""

    __slots__ = ("callback", "pending", "active", "deadline", "_handle")

    def __init__(self, callback: Optional[Callable[["TimerWatcher"], None]] = None):
        self.callback = callback
        self.pending = False
        self.active = False
        self.deadline = 0.0
        self._handle = None

    def __repr__(self):
        return f"TimerWatcher(active={self.active}, pending={self.pending})"


class Reactor:
    """
    Base class for reactors.

    Subclasses implement watcher management and the loop itself; hook
    bookkeeping is shared.
    """

    def __init__(self):
        self._prepare_hooks: list[Hook] = []
        self._check_hooks: list[Hook] = []

    # Hooks -------------------------------------------------------------

    def add_prepare(self, hook: Hook):
        if hook not in self._prepare_hooks:
            self._prepare_hooks.append(hook)
            self._hooks_changed()

    def remove_prepare(self, hook: Hook):
        if hook in self._prepare_hooks:
            self._prepare_hooks.remove(hook)
            self._hooks_changed()

    def add_check(self, hook: Hook):
        if hook not in self._check_hooks:
            self._check_hooks.append(hook)
            self._hooks_changed()

    def remove_check(self, hook: Hook):
        if hook in self._check_hooks:
            self._check_hooks.remove(hook)
            self._hooks_changed()

    def _hooks_changed(self):
        pass

    def _run_prepare_hooks(self):
        for hook in list(self._prepare_hooks):
            hook()

    def _run_check_hooks(self):
        for hook in list(self._check_hooks):
            hook()

    # Watchers / loop ---------------------------------------------------

    def io_start(self, watcher: IoWatcher):
        raise NotImplementedError

    def io_stop(self, watcher: IoWatcher):
        raise NotImplementedError

    def timer_start(self, watcher: TimerWatcher, after: float):
        raise NotImplementedError

    def timer_stop(self, watcher: TimerWatcher):
        raise NotImplementedError

    def run(self):
        raise NotImplementedError

    def stop(self):
        raise NotImplementedError

    def wakeup(self):
        """Make sure another iteration runs soon so new registrations get polled."""
        raise NotImplementedError

    def close(self):
        raise NotImplementedError

    def report_exception(self, message: str, exc: BaseException):
        """Report a fault that must not unwind the reactor."""
        raise NotImplementedError


class SelectorReactor(Reactor):
    """Self-contained reactor loop on selectors.DefaultSelector."""

    def __init__(self, exception_handler: Optional[ExceptionHandler] = None):
        super().__init__()
        self._selector = selectors.DefaultSelector()
        self._io: dict[int, IoWatcher] = {}
        self._timers: list[TimerWatcher] = []
        self._exception_handler = exception_handler
        self._running = False
        self._stopping = False
        self._closed = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def closed(self) -> bool:
        return self._closed

    def io_start(self, watcher: IoWatcher):
        if watcher.active:
            return
        if watcher.fd in self._io:
            raise ValueError(f"fd {watcher.fd} is already watched")
        self._selector.register(watcher.fd, selectors.EVENT_READ, watcher)
        self._io[watcher.fd] = watcher
        watcher.active = True

    def io_stop(self, watcher: IoWatcher):
        watcher.pending = False
        if not watcher.active:
            return
        self._selector.unregister(watcher.fd)
        del self._io[watcher.fd]
        watcher.active = False

    def timer_start(self, watcher: TimerWatcher, after: float):
        watcher.deadline = time.monotonic() + max(0.0, after)
        watcher.pending = False
        watcher.active = True
        if watcher not in self._timers:
            self._timers.append(watcher)

    def timer_stop(self, watcher: TimerWatcher):
        watcher.pending = False
        watcher.active = False
        if watcher in self._timers:
            self._timers.remove(watcher)

    def _alive(self) -> bool:
        return bool(self._prepare_hooks or self._check_hooks or self._io or self._timers)

    def _poll_timeout(self, cap: Optional[float]) -> Optional[float]:
        timeout = cap
        if self._timers:
            nearest = max(0.0, min(t.deadline for t in self._timers) - time.monotonic())
            timeout = nearest if timeout is None else min(timeout, nearest)
        if timeout is None and not self._io:
            # Nothing could ever wake the poll
            return 0.0
        return timeout

    def run_once(self, timeout: Optional[float] = None):
        """Run a single prepare / poll / check iteration.

        timeout caps how long the poll may block (None = until a watcher fires).
        """
        if self._closed:
            raise RuntimeError("reactor is closed")

        self._run_prepare_hooks()

        for key, _mask in self._selector.select(self._poll_timeout(timeout)):
            key.data.pending = True

        now = time.monotonic()
        expired = [t for t in self._timers if t.deadline <= now]
        for timer in expired:
            self._timers.remove(timer)
            timer.active = False
            timer.pending = True

        self._run_check_hooks()

        for watcher in list(self._io.values()):
            if watcher.pending:
                watcher.pending = False
                if watcher.callback is not None:
                    watcher.callback(watcher)
        for timer in expired:
            if timer.pending:
                timer.pending = False
                if timer.callback is not None:
                    timer.callback(timer)

    def run(self):
        """Run iterations until stop() is called or nothing is left to wait on."""
        if self._running:
            raise RuntimeError("reactor is already running")
        self._running = True
        self._stopping = False
        try:
            while not self._stopping and self._alive():
                self.run_once()
        finally:
            self._running = False
            self._stopping = False

    def stop(self):
        """Finish the current iteration, then return from run()."""
        self._stopping = True

    def wakeup(self):
        # Registrations only happen on the driving thread, between polls
        pass

    def close(self):
        if self._closed:
            return
        self._closed = True
        for watcher in self._io.values():
            watcher.active = False
            watcher.pending = False
        self._io.clear()
        self._timers.clear()
        self._prepare_hooks.clear()
        self._check_hooks.clear()
        self._selector.close()

    def report_exception(self, message: str, exc: BaseException):
        if self._exception_handler is not None:
            self._exception_handler(message, exc)
            return
        logger.error(message, exc_info=(type(exc), exc, exc.__traceback__))

    def __repr__(self):
        state = "running" if self._running else ("closed" if self._closed else "idle")
        return f"SelectorReactor({state}, io={len(self._io)}, timers={len(self._timers)})"


class AsyncioReactor(Reactor):
    """Reactor adapter onto an externally owned asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        super().__init__()
        self._loop = loop if loop is not None else asyncio.get_running_loop()
        self._io: dict[int, IoWatcher] = {}
        self._fired_timers: list[TimerWatcher] = []
        self._iteration_scheduled = False
        self._check_scheduled = False
        self._closed = False

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def _hooks_changed(self):
        if self._prepare_hooks and not self._iteration_scheduled and not self._closed:
            self._iteration_scheduled = True
            self._loop.call_soon(self._prepare_phase)

    def _prepare_phase(self):
        self._iteration_scheduled = False
        if self._closed or not self._prepare_hooks:
            return
        self._run_prepare_hooks()

    def _schedule_check(self):
        if not self._check_scheduled and not self._closed:
            self._check_scheduled = True
            self._loop.call_soon(self._check_phase)

    def _check_phase(self):
        self._check_scheduled = False
        if self._closed:
            return
        fired, self._fired_timers = self._fired_timers, []

        self._run_check_hooks()

        for watcher in list(self._io.values()):
            if watcher.pending:
                watcher.pending = False
                if watcher.callback is not None:
                    watcher.callback(watcher)
        for timer in fired:
            if timer.pending:
                timer.pending = False
                if timer.callback is not None:
                    timer.callback(timer)

        # Next iteration: re-arm before control returns to the asyncio poll
        if self._prepare_hooks and not self._iteration_scheduled:
            self._prepare_phase()

    def _on_readable(self, watcher: IoWatcher):
        watcher.pending = True
        self._schedule_check()

    def _on_timer(self, watcher: TimerWatcher):
        watcher._handle = None
        watcher.active = False
        watcher.pending = True
        self._fired_timers.append(watcher)
        self._schedule_check()

    def io_start(self, watcher: IoWatcher):
        if watcher.active:
            return
        if watcher.fd in self._io:
            raise ValueError(f"fd {watcher.fd} is already watched")
        self._loop.add_reader(watcher.fd, self._on_readable, watcher)
        self._io[watcher.fd] = watcher
        watcher.active = True

    def io_stop(self, watcher: IoWatcher):
        watcher.pending = False
        if not watcher.active:
            return
        self._loop.remove_reader(watcher.fd)
        del self._io[watcher.fd]
        watcher.active = False

    def timer_start(self, watcher: TimerWatcher, after: float):
        self.timer_stop(watcher)
        after = max(0.0, after)
        watcher.deadline = self._loop.time() + after
        watcher.active = True
        watcher._handle = self._loop.call_later(after, self._on_timer, watcher)

    def timer_stop(self, watcher: TimerWatcher):
        watcher.pending = False
        watcher.active = False
        if watcher._handle is not None:
            watcher._handle.cancel()
            watcher._handle = None

    def run(self):
        self._loop.run_forever()

    def stop(self):
        self._loop.stop()

    def wakeup(self):
        self._schedule_check()

    def close(self):
        """Detach from the asyncio loop (the loop itself is not closed)."""
        if self._closed:
            return
        self._closed = True
        for watcher in list(self._io.values()):
            self.io_stop(watcher)
        for timer in self._fired_timers:
            timer.pending = False
        self._fired_timers.clear()
        self._prepare_hooks.clear()
        self._check_hooks.clear()

    def report_exception(self, message: str, exc: BaseException):
        self._loop.call_exception_handler({"message": message, "exception": exc})

    def __repr__(self):
        return f"AsyncioReactor({self._loop!r}, io={len(self._io)})"
