"""
Testing utilities - FakeEngine for unit tests without an SNMP agent.

FakeEngine is a drop-in engine_factory for Endpoint.open(). Each session it
creates is backed by a real socket.socketpair(), so both reactors can poll
it: scripting a reply writes a wake-up byte and the reply is delivered the
next time the bridge hands the session its readable descriptor.

    engine = FakeEngine()
    ep = Endpoint.open("agent", bridge=bridge, engine_factory=engine)
    rid = ep.get("1.3.6.1.2.1.1.3.0", on_done)
    engine.last_session.reply(rid, [("1.3.6.1.2.1.1.3.0", rfc1902.TimeTicks(42))])
    reactor.run_once()

For end-to-end flows, give the engine an auto_reply callable (for example
static_responder()) and every sent request is answered on the next poll.
"""

import bisect
import collections
import logging
import socket
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from pysnmp.proto import rfc1905

from .constants import DEFAULT_MAX_REPETITIONS, EngineOp, RequestKind, SnmpVersion
from .engine import Credentials, EngineCallback, EngineReply, EngineSession, Peer, SelectInfo
from .errors import EncodingError, OpenFailedError
from .oid import Oid, parse_oid

logger = logging.getLogger(__name__)


@dataclass
class FakeRequest:
    """A query as seen by the fake engine."""

    kind: RequestKind
    oids: tuple[Oid, ...]
    max_repetitions: int = DEFAULT_MAX_REPETITIONS
    request_id: int = 0


AutoReply = Callable[[FakeRequest], Optional[Sequence[tuple[Any, Any]]]]


def _as_oid(oid) -> Oid:
    return parse_oid(oid) if isinstance(oid, str) else tuple(oid)


def static_responder(values: dict) -> AutoReply:
    """Build an auto_reply that answers from a fixed {oid: asn1 value} table.

    GET answers noSuchObject for unknown OIDs; GETNEXT / GETBULK walk the
    table in OID order and answer endOfMibView past its end.
    """
    table = {_as_oid(oid): value for oid, value in values.items()}
    ordered = sorted(table)

    def _next(oid: Oid):
        index = bisect.bisect_right(ordered, oid)
        if index < len(ordered):
            return ordered[index], table[ordered[index]]
        return oid, rfc1905.endOfMibView

    def _respond(request: FakeRequest):
        if request.kind is RequestKind.GET:
            return [(oid, table.get(oid, rfc1905.noSuchObject)) for oid in request.oids]
        if request.kind is RequestKind.GETNEXT:
            return [_next(oid) for oid in request.oids]
        varbinds = []
        cursors = list(request.oids)
        for _ in range(request.max_repetitions):
            row = [_next(oid) for oid in cursors]
            varbinds.extend(row)
            cursors = [oid for oid, _value in row]
        return varbinds

    return _respond


class FakeSession(EngineSession):
    """Scriptable engine session; see FakeEngine."""

    def __init__(
        self,
        engine: "FakeEngine",
        peer: Peer,
        credentials: Credentials,
        callback: EngineCallback,
        *,
        max_repetitions: int = DEFAULT_MAX_REPETITIONS,
    ):
        self.engine = engine
        self.peer = peer
        self.credentials = credentials
        self._callback = callback
        self._max_repetitions = max_repetitions

        self._rsock, self._wsock = socket.socketpair()
        self._rsock.setblocking(False)
        self._wsock.setblocking(False)

        self.sent: list[FakeRequest] = []
        self.outstanding: dict[int, FakeRequest] = {}
        self.fail_sends = 0
        self.read_calls = 0
        self.timeout_calls = 0
        self._events: collections.deque = collections.deque()
        self._expired: set[int] = set()
        self._next_id = 1
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def fileno(self) -> int:
        return self._rsock.fileno() if not self._closed else -1

    # Engine surface ------------------------------------------------------

    def build_request(self, kind: RequestKind, oids: Sequence[Oid]) -> FakeRequest:
        if kind is RequestKind.GETBULK and self.credentials.version is SnmpVersion.V1:
            raise EncodingError("GETBULK requires SNMPv2c")
        return FakeRequest(kind, tuple(oids), self._max_repetitions)

    def send(self, request: FakeRequest) -> int:
        if self._closed:
            return 0
        if self.fail_sends:
            self.fail_sends -= 1
            return 0

        request_id = self._next_id
        self._next_id += 1
        request.request_id = request_id
        self.sent.append(request)
        self.outstanding[request_id] = request

        if self.engine.auto_fail is not None:
            self.fail(request_id, self.engine.auto_fail)
        elif self.engine.auto_reply is not None:
            varbinds = self.engine.auto_reply(request)
            if varbinds is not None:
                self.reply(request_id, varbinds)
        return request_id

    def select_info(self) -> SelectInfo:
        if self._closed:
            return SelectInfo(fds=())
        timeout = 0.0 if self._expired else None
        return SelectInfo(fds=(self._rsock.fileno(),), timeout=timeout)

    def read(self, fds: Sequence[int]):
        self.read_calls += 1
        if self._closed or self._rsock.fileno() not in fds:
            return
        try:
            while self._rsock.recv(4096):
                pass
        except BlockingIOError:
            pass

        while self._events and not self._closed:
            op, request_id, reply = self._events.popleft()
            if self.outstanding.pop(request_id, None) is None:
                logger.debug(f"Fake session dropping event for id={request_id}: not outstanding")
                continue
            self._callback(op, self, request_id, reply)

    def timeout(self):
        self.timeout_calls += 1
        for request_id in sorted(self._expired):
            if self._closed:
                break
            self._expired.discard(request_id)
            if self.outstanding.pop(request_id, None) is not None:
                self._callback(EngineOp.TIMED_OUT, self, request_id, None)

    def close(self):
        if self._closed:
            return
        self._closed = True
        self.outstanding.clear()
        self._events.clear()
        self._expired.clear()
        self._rsock.close()
        self._wsock.close()

    # Scripting -------------------------------------------------------------

    def _wake(self):
        try:
            self._wsock.send(b"\x00")
        except BlockingIOError:
            pass  # buffer full; the reader is already woken

    def reply(self, request_id: int, varbinds, error_status: int = 0, error_index: int = 0):
        """Queue a response; delivered on the next read."""
        pairs = [(_as_oid(oid), value) for oid, value in varbinds]
        reply = EngineReply(request_id, error_status, error_index, pairs)
        self._events.append((EngineOp.RECEIVED, request_id, reply))
        self._wake()

    def fail(self, request_id: int, op: EngineOp = EngineOp.SEND_FAILED):
        """Queue a failure completion; delivered on the next read."""
        self._events.append((op, request_id, None))
        self._wake()

    def expire(self, request_id: int):
        """Time a request out; delivered on the next timeout() call."""
        self._expired.add(request_id)

    def emit(self, op: EngineOp, request_id: int, reply: Optional[EngineReply] = None):
        """Invoke the engine callback immediately, bypassing the reactor."""
        self.outstanding.pop(request_id, None)
        self._callback(op, self, request_id, reply)

    def __repr__(self):
        state = "closed" if self._closed else f"{len(self.outstanding)} outstanding"
        return f"FakeSession({self.peer}, {state})"


@dataclass
class FakeEngine:
    """Drop-in engine_factory that creates FakeSessions.

    Attributes:
        auto_reply: Called with every sent FakeRequest; a returned varbind
            list is queued as the reply, None leaves the request outstanding
        auto_fail: Fail every sent request with this engine op (takes
            precedence over auto_reply)
        fail_open: Make the next session open raise OpenFailedError
        sessions: Every session created, in creation order
    """

    auto_reply: Optional[AutoReply] = None
    auto_fail: Optional[EngineOp] = None
    fail_open: bool = False
    sessions: list[FakeSession] = field(default_factory=list)

    def __call__(
        self,
        peer: Peer,
        credentials: Credentials,
        callback: EngineCallback,
        *,
        timeout: float = 0.0,
        retries: int = 0,
        max_repetitions: int = DEFAULT_MAX_REPETITIONS,
    ) -> FakeSession:
        if self.fail_open:
            self.fail_open = False
            raise OpenFailedError(str(peer), "fake open failure")
        session = FakeSession(self, peer, credentials, callback, max_repetitions=max_repetitions)
        self.sessions.append(session)
        return session

    @property
    def last_session(self) -> FakeSession:
        return self.sessions[-1]

    def close_all(self):
        for session in self.sessions:
            session.close()
