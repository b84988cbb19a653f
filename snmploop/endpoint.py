"""
Endpoint - one open SNMP session to a remote agent.

An Endpoint owns exactly one protocol engine session and the queue of
requests outstanding on it. It stays registered with its ReactorBridge for
as long as that queue is non-empty.

Usage:
    bridge = bridge_for_loop()
    ep = Endpoint.open("192.0.2.10", Credentials("public"), bridge)

    def on_done(error, varbinds):
        if error:
            print("failed:", error)
        else:
            for vb in varbinds:
                print(format_oid(vb.oid), vb.value.data)

    ep.get("1.3.6.1.2.1.1.1.0", on_done)

    # or, from a coroutine on the bridge's loop
    varbinds = await ep.request(RequestKind.GET, "1.3.6.1.2.1.1.3.0")

Completion routing runs inside the engine's read/timeout handling, i.e. in
the bridge's check phase. The pending record is always removed (and the
Endpoint deregistered when the queue empties) before the continuation runs,
so a continuation may send new requests or close the Endpoint.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Sequence, Union

from .constants import (
    DEFAULT_MAX_REPETITIONS,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    REASON_BAD_VALUE_TYPE,
    EngineOp,
    RequestKind,
    error_status_message,
    failure_reason,
)
from .engine import Credentials, EngineReply, EngineSession, Peer, SelectInfo, open_session
from .errors import InvariantError, OpenFailedError, RequestError, SendFailedError, SnmpLoopError, ValueDecodeError
from .oid import normalize_oids
from .reactor import AsyncioReactor
from .values import VarBind, decode_varbinds

if TYPE_CHECKING:
    from .bridge import ReactorBridge

logger = logging.getLogger(__name__)

# continuation(error, varbinds): exactly one of the two is None
Continuation = Callable[[Optional[str], Optional[list[VarBind]]], None]
EngineFactory = Callable[..., EngineSession]


@dataclass
class PendingRequest:
    """A sent query awaiting its single terminal outcome."""

    request_id: int
    kind: RequestKind
    continuation: Continuation


class RequestQueue:
    """Outstanding requests of one Endpoint, keyed by engine request id."""

    def __init__(self):
        self._pending: dict[int, PendingRequest] = {}

    def push(self, request: PendingRequest):
        if request.request_id == 0:
            raise InvariantError("request id 0 is reserved for send failures")
        if request.request_id in self._pending:
            raise InvariantError(f"duplicate request id {request.request_id}")
        self._pending[request.request_id] = request

    def pop(self, request_id: int) -> PendingRequest:
        try:
            return self._pending.pop(request_id)
        except KeyError:
            raise InvariantError(f"completion for request id {request_id} with no pending request") from None

    def clear(self) -> list[PendingRequest]:
        abandoned = list(self._pending.values())
        self._pending.clear()
        return abandoned

    def ids(self) -> list[int]:
        return list(self._pending)

    def __contains__(self, request_id: int) -> bool:
        return request_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)


class Endpoint:
    """One open session to a remote agent plus its pending-request queue."""

    def __init__(
        self,
        peer: Peer,
        credentials: Credentials,
        bridge: "ReactorBridge",
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        max_repetitions: int = DEFAULT_MAX_REPETITIONS,
        engine_factory: EngineFactory = open_session,
        is_clone: bool = False,
    ):
        self._peer = peer
        self._credentials = credentials
        self._bridge = bridge
        self._options = {
            "timeout": timeout,
            "retries": retries,
            "max_repetitions": max_repetitions,
            "engine_factory": engine_factory,
        }
        self._is_clone = is_clone
        self._queue = RequestQueue()
        self._closed = False

        self._session = engine_factory(
            peer,
            credentials,
            self._on_engine_event,
            timeout=timeout,
            retries=retries,
            max_repetitions=max_repetitions,
        )
        logger.debug(f"Opened {self!r}")

    @classmethod
    def open(
        cls,
        peer: Union[Peer, str],
        credentials: Optional[Credentials] = None,
        bridge: Optional["ReactorBridge"] = None,
        **options,
    ) -> "Endpoint":
        """Open an Endpoint; raises OpenFailedError.

        Args:
            peer: Peer or net-snmp style peer name ("host", "host:port", "udp6:[::1]:1161")
            credentials: Community/version (default: Credentials())
            bridge: Bridge to register with (default: the running loop's shared bridge)
            **options: timeout, retries, max_repetitions, engine_factory
        """
        if isinstance(peer, str):
            try:
                peer = Peer.parse(peer)
            except ValueError as e:
                raise OpenFailedError(peer, str(e)) from e
        if credentials is None:
            credentials = Credentials()
        if bridge is None:
            from .bridge import bridge_for_loop

            bridge = bridge_for_loop()
        return cls(peer, credentials, bridge, **options)

    def clone(self, bridge: "ReactorBridge") -> "Endpoint":
        """Open a fresh Endpoint to the same peer, bound to another bridge."""
        if self._closed:
            raise SnmpLoopError("cannot clone a closed endpoint")
        return Endpoint(self._peer, self._credentials, bridge, **self._options, is_clone=True)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def peer(self) -> Peer:
        return self._peer

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    @property
    def bridge(self) -> "ReactorBridge":
        return self._bridge

    @property
    def session(self) -> EngineSession:
        return self._session

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_clone(self) -> bool:
        return self._is_clone

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def send(self, kind: RequestKind, oids, continuation: Continuation) -> int:
        """Send a query and enqueue its pending record.

        Returns the engine-assigned request id. Raises EncodingError for bad
        OIDs and SendFailedError when the engine refuses the query or the
        bridge is closed; nothing is enqueued and the continuation is never
        called.
        """
        if self._closed:
            raise SendFailedError("endpoint is closed")
        if self._bridge.closed:
            raise SendFailedError(f"bridge of {self!r} is closed")
        if not isinstance(kind, RequestKind):
            raise InvariantError(f"unknown request kind {kind!r}")

        request = self._session.build_request(kind, normalize_oids(oids))
        request_id = self._session.send(request)
        if request_id == 0:
            raise SendFailedError()

        was_empty = len(self._queue) == 0
        self._queue.push(PendingRequest(request_id, kind, continuation))
        if was_empty:
            self._bridge.register(self)
        logger.debug(f"{kind.name} id={request_id} queued on {self._peer} ({len(self._queue)} pending)")
        return request_id

    def get(self, oids, callback: Continuation, sync: bool = False) -> Optional[int]:
        return self._dispatch(RequestKind.GET, oids, callback, sync)

    def get_next(self, oids, callback: Continuation, sync: bool = False) -> Optional[int]:
        return self._dispatch(RequestKind.GETNEXT, oids, callback, sync)

    def get_bulk(self, oids, callback: Continuation, sync: bool = False) -> Optional[int]:
        return self._dispatch(RequestKind.GETBULK, oids, callback, sync)

    def _dispatch(self, kind: RequestKind, oids, callback: Continuation, sync: bool) -> Optional[int]:
        if not sync:
            return self.send(kind, oids, callback)

        from .sync import call_sync

        try:
            varbinds = call_sync(self, kind, oids)
        except RequestError as e:
            callback(e.reason, None)
        else:
            callback(None, varbinds)
        return None

    async def request(self, kind: RequestKind, oids) -> list[VarBind]:
        """Send a query and wait for it on the running asyncio loop.

        The Endpoint's bridge must be driven by that loop. Raises
        RequestError with the failure reason.
        """
        loop = asyncio.get_running_loop()
        reactor = self._bridge.reactor
        if not isinstance(reactor, AsyncioReactor) or reactor.loop is not loop:
            raise SnmpLoopError("endpoint bridge is not driven by the running event loop")

        future = loop.create_future()

        def _complete(error: Optional[str], varbinds: Optional[list[VarBind]]):
            if future.done():
                return
            if error is not None:
                future.set_exception(RequestError(error))
            else:
                future.set_result(varbinds)

        self.send(kind, oids, _complete)
        return await future

    # ------------------------------------------------------------------
    # Bridge surface
    # ------------------------------------------------------------------

    def select_info(self) -> SelectInfo:
        if self._closed:
            return SelectInfo(fds=())
        return self._session.select_info()

    def deliver_readable(self, fds: Sequence[int]):
        if not self._closed:
            self._session.read(fds)

    def deliver_timeout(self):
        if not self._closed:
            self._session.timeout()

    # ------------------------------------------------------------------
    # Completion routing
    # ------------------------------------------------------------------

    def _on_engine_event(self, op: EngineOp, session: EngineSession, request_id: int, reply: Optional[EngineReply]):
        if session is not self._session:
            raise InvariantError(f"engine event for a foreign session on {self!r}")

        pending = self._queue.pop(request_id)
        if len(self._queue) == 0:
            self._bridge.deregister(self)

        if op != EngineOp.RECEIVED:
            reason = failure_reason(op)
            logger.debug(f"{pending.kind.name} id={request_id} to {self._peer} failed: {reason}")
            self._resolve(pending, reason, None)
            return

        if reply is None or reply.request_id != request_id:
            raise InvariantError(f"reply does not match request id {request_id}")

        if reply.error_status:
            self._resolve(pending, error_status_message(reply.error_status), None)
            return

        try:
            varbinds = decode_varbinds(reply.varbinds)
        except ValueDecodeError as e:
            logger.warning(f"Reply id={request_id} from {self._peer}: {e}")
            self._resolve(pending, REASON_BAD_VALUE_TYPE, None)
            return
        self._resolve(pending, None, varbinds)

    def _resolve(self, pending: PendingRequest, error: Optional[str], varbinds: Optional[list[VarBind]]):
        try:
            pending.continuation(error, varbinds)
        except InvariantError:
            raise
        except Exception as e:
            self._bridge.reactor.report_exception(
                f"Unhandled exception in continuation for {pending.kind.name} id={pending.request_id} to {self._peer}",
                e,
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self):
        """Release the engine session.

        A long-lived Endpoint must be idle; closing one with pending
        requests is an InvariantError. Clones may be closed at any time and
        abandon whatever is still pending.
        """
        if self._closed:
            return
        if len(self._queue) and not self._is_clone:
            raise InvariantError(f"closing {self!r} with {len(self._queue)} pending request(s)")

        self._closed = True
        abandoned = self._queue.clear()
        if abandoned:
            logger.debug(f"Abandoned {len(abandoned)} pending request(s) on {self!r}")
        if self._bridge.is_registered(self):
            self._bridge.deregister(self)
        self._session.close()
        logger.debug(f"Closed {self!r}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self):
        kind = "clone " if self._is_clone else ""
        state = "closed" if self._closed else f"{len(self._queue)} pending"
        return f"Endpoint({kind}{self._peer}, {state})"
