"""
ReactorBridge - multiplexes every active Endpoint onto one reactor.

Each reactor iteration the bridge asks every registered Endpoint what it is
waiting for (descriptors + nearest deadline), starts one io watcher per
descriptor and a single timer for the nearest deadline across all
Endpoints. After the poll it hands each Endpoint either its readable
descriptors or a timeout notification.

The registry is two-phase: deregister() only marks an Endpoint for removal;
the marked Endpoints are dropped in the check phase. Engine callbacks run
inside the check phase and may deregister (or close) any Endpoint, including
the one being serviced, without disturbing the iteration.

Bridges are not thread-safe; all use of one bridge happens on the thread
driving its reactor.
"""

import asyncio
import logging
import weakref
from typing import TYPE_CHECKING, Optional

from .errors import InvariantError
from .reactor import AsyncioReactor, IoWatcher, Reactor, SelectorReactor, TimerWatcher

if TYPE_CHECKING:
    from .endpoint import Endpoint

logger = logging.getLogger(__name__)


class _Registration:
    __slots__ = ("endpoint", "watchers")

    def __init__(self, endpoint: "Endpoint"):
        self.endpoint = endpoint
        # Re-derived from select_info() every iteration
        self.watchers: list[IoWatcher] = []


class ReactorBridge:
    """Registry of active Endpoints sharing one reactor."""

    def __init__(self, reactor: Reactor, *, owns_reactor: bool = False):
        self._reactor = reactor
        self._owns_reactor = owns_reactor
        self._registrations: list[_Registration] = []
        self._removals: set = set()
        self._timer = TimerWatcher()
        self._armed = False
        self._closed = False

    @classmethod
    def for_asyncio(cls, loop: Optional[asyncio.AbstractEventLoop] = None) -> "ReactorBridge":
        """Bridge onto an asyncio loop (the running loop by default)."""
        return cls(AsyncioReactor(loop), owns_reactor=True)

    @classmethod
    def private(cls) -> "ReactorBridge":
        """Bridge on a fresh SelectorReactor, closed together with the bridge."""
        return cls(SelectorReactor(), owns_reactor=True)

    @property
    def reactor(self) -> Reactor:
        return self._reactor

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def armed(self) -> bool:
        """True while the prepare/check hooks are installed on the reactor."""
        return self._armed

    @property
    def active_count(self) -> int:
        return len(self._registrations) - len(self._removals)

    def _find(self, endpoint: "Endpoint") -> Optional[_Registration]:
        for reg in self._registrations:
            if reg.endpoint is endpoint:
                return reg
        return None

    def is_registered(self, endpoint: "Endpoint") -> bool:
        return endpoint not in self._removals and self._find(endpoint) is not None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, endpoint: "Endpoint"):
        """Add an Endpoint to the active set, arming the hooks on first use."""
        if self._closed:
            raise RuntimeError("bridge is closed")

        if endpoint in self._removals:
            # Still in the list; just cancel the pending removal
            self._removals.discard(endpoint)
            logger.debug(f"Re-registered {endpoint!r} before removal")
        elif self._find(endpoint) is None:
            self._registrations.append(_Registration(endpoint))
            logger.debug(f"Registered {endpoint!r} ({self.active_count} active)")
        else:
            return

        if not self._armed:
            self._arm()
        else:
            self._reactor.wakeup()

    def deregister(self, endpoint: "Endpoint"):
        """Mark an Endpoint for removal; it is dropped in the next check phase."""
        if self._find(endpoint) is None:
            raise InvariantError(f"deregister of unknown endpoint {endpoint!r}")
        if endpoint not in self._removals:
            self._removals.add(endpoint)
            logger.debug(f"Marked {endpoint!r} for removal")

    def _arm(self):
        self._reactor.add_prepare(self._prepare)
        self._reactor.add_check(self._check)
        self._armed = True

    def _disarm(self):
        self._reactor.timer_stop(self._timer)
        self._reactor.remove_prepare(self._prepare)
        self._reactor.remove_check(self._check)
        self._armed = False

    def _stop_watchers(self, reg: _Registration):
        for watcher in reg.watchers:
            self._reactor.io_stop(watcher)
        reg.watchers.clear()

    def _drop(self, reg: _Registration):
        self._stop_watchers(reg)
        self._registrations.remove(reg)
        self._removals.discard(reg.endpoint)
        logger.debug(f"Removed {reg.endpoint!r} ({self.active_count} active)")

    # ------------------------------------------------------------------
    # Reactor hooks
    # ------------------------------------------------------------------

    def _prepare(self):
        live = [reg for reg in self._registrations if reg.endpoint not in self._removals]
        if not live:
            # Only removals left: wake immediately so check can sweep them
            self._reactor.timer_start(self._timer, 0.0)
            return

        nearest: Optional[float] = None
        for reg in live:
            info = reg.endpoint.select_info()
            self._stop_watchers(reg)
            for fd in info.fds:
                watcher = IoWatcher(fd)
                self._reactor.io_start(watcher)
                reg.watchers.append(watcher)
            if info.timeout is not None:
                nearest = info.timeout if nearest is None else min(nearest, info.timeout)

        if nearest is not None:
            self._reactor.timer_start(self._timer, nearest)
        else:
            self._reactor.timer_stop(self._timer)

    def _check(self):
        self._reactor.timer_stop(self._timer)

        for reg in list(self._registrations):
            if reg not in self._registrations:
                continue
            endpoint = reg.endpoint
            if endpoint in self._removals:
                self._drop(reg)
                continue

            readable = [watcher.fd for watcher in reg.watchers if watcher.clear_pending()]
            self._stop_watchers(reg)
            if readable:
                endpoint.deliver_readable(readable)
            else:
                endpoint.deliver_timeout()

            if endpoint in self._removals:
                self._drop(reg)

        if not self._registrations and self._armed:
            self._disarm()
            logger.debug("No active endpoints, hooks disarmed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self):
        """Drop every registration and detach from the reactor."""
        if self._closed:
            return
        self._closed = True
        if self.active_count:
            logger.debug(f"Closing bridge with {self.active_count} active endpoint(s)")
        for reg in self._registrations:
            self._stop_watchers(reg)
        self._registrations.clear()
        self._removals.clear()
        if self._armed:
            self._disarm()
        if self._owns_reactor:
            self._reactor.close()

    def __repr__(self):
        return f"ReactorBridge({self._reactor!r}, active={self.active_count})"


# Shared default bridge per asyncio loop. Each bridge references its loop, so
# entries are only dropped by the closed-loop sweep in bridge_for_loop()
_loop_bridges: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, ReactorBridge]" = weakref.WeakKeyDictionary()


def bridge_for_loop(loop: Optional[asyncio.AbstractEventLoop] = None) -> ReactorBridge:
    """Return the shared bridge for an asyncio loop, creating it on first use.

    Args:
        loop: Event loop to bind to (default: the running loop)
    """
    if loop is None:
        loop = asyncio.get_running_loop()

    for stale in [other for other in _loop_bridges if other.is_closed()]:
        _loop_bridges.pop(stale).close()

    bridge = _loop_bridges.get(loop)
    if bridge is None or bridge.closed:
        bridge = ReactorBridge.for_asyncio(loop)
        _loop_bridges[loop] = bridge
    return bridge
