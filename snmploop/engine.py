"""
SNMP protocol engine - per-session transport, request ids, retransmission.

The session layer only talks to an engine session through a small surface:

- build_request(kind, oids) -> opaque request (encodes the query PDU)
- send(request)             -> request id, or 0 on failure
- select_info()             -> descriptors to watch + nearest relative deadline
- read(fds)                 -> drain readable descriptors
- timeout()                 -> retransmit / expire overdue requests
- close()

Completions come back through the callback given at open time:
callback(op, session, request_id, reply). The callback runs synchronously
inside read() / timeout() and may close the session; the engine stops
processing as soon as it is closed.

UdpEngineSession is the concrete engine: one connected, non-blocking UDP
socket per session, SNMPv1/v2c messages built with pysnmp's protocol API and
BER-encoded with pyasn1.
"""

import logging
import random
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from pyasn1.codec.ber import decoder, encoder
from pyasn1.error import PyAsn1Error
from pyasn1.type import univ
from pysnmp.proto import api

from .constants import (
    DEFAULT_COMMUNITY,
    DEFAULT_MAX_REPETITIONS,
    DEFAULT_NON_REPEATERS,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    RECV_BUFFER_SIZE,
    SNMP_PORT,
    EngineOp,
    RequestKind,
    SnmpVersion,
)
from .errors import EncodingError, OpenFailedError
from .oid import Oid

logger = logging.getLogger(__name__)

# Request ids are INTEGER (-2^31..2^31-1) on the wire; 0 is reserved for "send failed"
_MAX_REQUEST_ID = 0x7FFFFFFF


@dataclass(frozen=True)
class Peer:
    """Remote agent address."""

    host: str
    port: int = SNMP_PORT

    @classmethod
    def parse(cls, text: str, default_port: int = SNMP_PORT) -> "Peer":
        """Parse a net-snmp style peer name.

        Accepts "host", "host:port", "[v6addr]:port", a bare IPv6 address and
        the "udp:" / "udp6:" transport prefixes.
        """
        spec = text.strip()
        lowered = spec.lower()
        for prefix in ("udp6:", "udp:"):
            if lowered.startswith(prefix):
                spec = spec[len(prefix) :]
                break
        else:
            if ":" in lowered and lowered.split(":", 1)[0] in ("tcp", "tcp6", "unix", "ipx"):
                raise ValueError(f"unsupported transport in peer name {text!r}")

        port_text = None
        if spec.startswith("["):
            end = spec.find("]")
            if end < 0:
                raise ValueError(f"unterminated IPv6 address in peer name {text!r}")
            host = spec[1:end]
            rest = spec[end + 1 :]
            if rest:
                if not rest.startswith(":"):
                    raise ValueError(f"invalid peer name {text!r}")
                port_text = rest[1:]
        elif spec.count(":") == 1:
            host, port_text = spec.split(":")
        else:
            host = spec

        if not host:
            raise ValueError(f"missing host in peer name {text!r}")

        port = default_port
        if port_text is not None:
            if not port_text.isdigit():
                raise ValueError(f"invalid port in peer name {text!r}")
            port = int(port_text)
        if not 0 < port < 65536:
            raise ValueError(f"port out of range in peer name {text!r}")
        return cls(host, port)

    def __str__(self):
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class Credentials:
    """Community-based credentials (SNMPv1 / SNMPv2c)."""

    community: str = DEFAULT_COMMUNITY
    version: SnmpVersion = SnmpVersion.V2C

    def __repr__(self):
        return f"Credentials(community=<{len(self.community)} chars>, version={self.version.name})"


@dataclass(frozen=True)
class SelectInfo:
    """What a session is waiting for.

    fds: descriptors to watch for read-readiness.
    timeout: seconds until the nearest request deadline, or None when the
        session would block indefinitely (nothing outstanding).
    """

    fds: tuple[int, ...]
    timeout: Optional[float] = None


@dataclass(frozen=True)
class EngineReply:
    """A decoded response PDU."""

    request_id: int
    error_status: int = 0
    error_index: int = 0
    varbinds: Sequence[tuple[Oid, Any]] = ()


EngineCallback = Callable[[EngineOp, "EngineSession", int, Optional[EngineReply]], None]


class EngineSession:
    """
    Base class for protocol engine sessions.

    Subclasses implement the transport and wire format; the session layer
    only relies on the methods below.
    """

    def build_request(self, kind: RequestKind, oids: Sequence[Oid]):
        """Build a query for the given OIDs (one variable each)."""
        raise NotImplementedError

    def send(self, request) -> int:
        """Transmit a request; returns its request id, or 0 on failure."""
        raise NotImplementedError

    def select_info(self) -> SelectInfo:
        raise NotImplementedError

    def read(self, fds: Sequence[int]):
        """Process readable descriptors, firing RECEIVED callbacks."""
        raise NotImplementedError

    def timeout(self):
        """Retransmit or expire overdue requests, firing TIMED_OUT callbacks."""
        raise NotImplementedError

    def close(self):
        raise NotImplementedError

    def fileno(self) -> int:
        raise NotImplementedError


@dataclass
class _OutgoingRequest:
    kind: RequestKind
    pdu: Any


@dataclass
class _Outstanding:
    request_id: int
    kind: RequestKind
    data: bytes
    deadline: float
    retries_left: int
    sent_at: float = field(default_factory=time.monotonic)


class UdpEngineSession(EngineSession):
    """SNMPv1/v2c engine session over a connected UDP socket."""

    def __init__(
        self,
        peer: Peer,
        credentials: Credentials,
        callback: EngineCallback,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        max_repetitions: int = DEFAULT_MAX_REPETITIONS,
    ):
        self._peer = peer
        self._credentials = credentials
        self._callback = callback
        self._timeout = timeout
        self._retries = retries
        self._max_repetitions = max_repetitions

        self._p_mod = api.PROTOCOL_MODULES[int(credentials.version)]
        self._sock: Optional[socket.socket] = None
        self._closed = False

        self._outstanding: dict[int, _Outstanding] = {}
        self._next_id = random.randint(1, _MAX_REQUEST_ID)

    @property
    def peer(self) -> Peer:
        return self._peer

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def outstanding_count(self) -> int:
        return len(self._outstanding)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self):
        """Resolve the peer and create the connected UDP socket."""
        try:
            infos = socket.getaddrinfo(self._peer.host, self._peer.port, type=socket.SOCK_DGRAM)
        except (socket.gaierror, UnicodeError) as e:
            raise OpenFailedError(str(self._peer), f"cannot resolve host: {e}")
        if not infos:
            raise OpenFailedError(str(self._peer), "no usable address")

        family, socktype, proto, _canon, sockaddr = infos[0]
        try:
            sock = socket.socket(family, socktype, proto)
        except OSError as e:
            raise OpenFailedError(str(self._peer), f"cannot create socket: {e}")
        try:
            sock.setblocking(False)
            sock.connect(sockaddr)
        except OSError as e:
            sock.close()
            raise OpenFailedError(str(self._peer), str(e))

        self._sock = sock
        logger.debug(f"Opened UDP session to {self._peer} (fd={sock.fileno()})")

    def close(self):
        if self._closed:
            return
        self._closed = True
        if self._outstanding:
            logger.debug(f"Abandoning {len(self._outstanding)} outstanding request(s) to {self._peer}")
        self._outstanding.clear()
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        logger.debug(f"Closed UDP session to {self._peer}")

    def fileno(self) -> int:
        return self._sock.fileno() if self._sock is not None else -1

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def build_request(self, kind: RequestKind, oids: Sequence[Oid]) -> _OutgoingRequest:
        p_mod = self._p_mod
        if kind is RequestKind.GET:
            pdu = p_mod.GetRequestPDU()
            p_mod.apiPDU.set_defaults(pdu)
        elif kind is RequestKind.GETNEXT:
            pdu = p_mod.GetNextRequestPDU()
            p_mod.apiPDU.set_defaults(pdu)
        elif kind is RequestKind.GETBULK:
            if self._credentials.version is SnmpVersion.V1:
                raise EncodingError("GETBULK requires SNMPv2c")
            pdu = p_mod.GetBulkRequestPDU()
            p_mod.apiBulkPDU.set_defaults(pdu)
            p_mod.apiBulkPDU.set_non_repeaters(pdu, DEFAULT_NON_REPEATERS)
            p_mod.apiBulkPDU.set_max_repetitions(pdu, self._max_repetitions)
        else:
            raise EncodingError(f"unsupported request kind {kind!r}")

        try:
            p_mod.apiPDU.set_varbinds(pdu, [(oid, univ.Null("")) for oid in oids])
        except PyAsn1Error as e:
            raise EncodingError(f"cannot add query to pdu: {e}")
        return _OutgoingRequest(kind, pdu)

    def _allocate_request_id(self) -> int:
        while True:
            request_id = self._next_id
            self._next_id = self._next_id + 1 if self._next_id < _MAX_REQUEST_ID else 1
            if request_id not in self._outstanding:
                return request_id

    def _encode(self, pdu) -> bytes:
        p_mod = self._p_mod
        msg = p_mod.Message()
        p_mod.apiMessage.set_defaults(msg)
        p_mod.apiMessage.set_community(msg, self._credentials.community)
        p_mod.apiMessage.set_pdu(msg, pdu)
        return encoder.encode(msg)

    def send(self, request: _OutgoingRequest) -> int:
        if self._closed or self._sock is None:
            return 0

        request_id = self._allocate_request_id()
        try:
            self._p_mod.apiPDU.set_request_id(request.pdu, request_id)
            data = self._encode(request.pdu)
        except PyAsn1Error as e:
            logger.warning(f"Cannot encode {request.kind.name} for {self._peer}: {e}")
            return 0

        try:
            self._sock.send(data)
        except OSError as e:
            logger.warning(f"Send to {self._peer} failed: {e}")
            return 0

        now = time.monotonic()
        self._outstanding[request_id] = _Outstanding(
            request_id=request_id,
            kind=request.kind,
            data=data,
            deadline=now + self._timeout,
            retries_left=self._retries,
            sent_at=now,
        )
        logger.debug(f"Sent {request.kind.name} id={request_id} to {self._peer} ({len(data)} bytes)")
        return request_id

    # ------------------------------------------------------------------
    # Reactor surface
    # ------------------------------------------------------------------

    def select_info(self) -> SelectInfo:
        if self._closed or self._sock is None:
            return SelectInfo(fds=())
        fds = (self._sock.fileno(),)
        if not self._outstanding:
            return SelectInfo(fds=fds)
        nearest = min(o.deadline for o in self._outstanding.values())
        return SelectInfo(fds=fds, timeout=max(0.0, nearest - time.monotonic()))

    def read(self, fds: Sequence[int]):
        if self._closed or self._sock is None or self._sock.fileno() not in fds:
            return
        while not self._closed:
            try:
                data = self._sock.recv(RECV_BUFFER_SIZE)
            except (BlockingIOError, InterruptedError):
                break
            except OSError as e:
                # ICMP unreachable surfaces here on connected sockets; requests time out
                logger.debug(f"Receive from {self._peer} failed: {e}")
                break
            self._handle_datagram(data)

    def _handle_datagram(self, data: bytes):
        p_mod = self._p_mod
        try:
            msg, _rest = decoder.decode(data, asn1Spec=p_mod.Message())
            community = p_mod.apiMessage.get_community(msg)
            pdu = p_mod.apiMessage.get_pdu(msg)
        except PyAsn1Error as e:
            logger.warning(f"Dropping undecodable datagram from {self._peer}: {e}")
            return

        if community.asOctets() != self._credentials.community.encode():
            logger.warning(f"Dropping datagram from {self._peer} with mismatched community")
            return
        if not pdu.isSameTypeWith(p_mod.GetResponsePDU()):
            logger.debug(f"Dropping non-response PDU {type(pdu).__name__} from {self._peer}")
            return

        try:
            request_id = int(p_mod.apiPDU.get_request_id(pdu))
            reply = EngineReply(
                request_id=request_id,
                error_status=int(p_mod.apiPDU.get_error_status(pdu)),
                error_index=int(p_mod.apiPDU.get_error_index(pdu)),
                varbinds=[(tuple(oid), value) for oid, value in p_mod.apiPDU.get_varbinds(pdu)],
            )
        except PyAsn1Error as e:
            logger.warning(f"Dropping malformed response from {self._peer}: {e}")
            return

        if self._outstanding.pop(request_id, None) is None:
            # Late duplicate of a request that already completed or timed out
            logger.debug(f"Ignoring response id={request_id} from {self._peer}: not outstanding")
            return

        self._callback(EngineOp.RECEIVED, self, request_id, reply)

    def timeout(self):
        if self._closed:
            return
        now = time.monotonic()
        for request_id, outstanding in list(self._outstanding.items()):
            if self._closed:
                break
            if outstanding.deadline > now or request_id not in self._outstanding:
                continue

            if outstanding.retries_left > 0:
                outstanding.retries_left -= 1
                outstanding.deadline = now + self._timeout
                try:
                    self._sock.send(outstanding.data)
                    logger.debug(f"Retransmitted id={request_id} to {self._peer}")
                    continue
                except OSError as e:
                    logger.warning(f"Retransmit to {self._peer} failed: {e}")
                    del self._outstanding[request_id]
                    self._callback(EngineOp.SEND_FAILED, self, request_id, None)
                    continue

            del self._outstanding[request_id]
            logger.debug(f"Request id={request_id} to {self._peer} timed out")
            self._callback(EngineOp.TIMED_OUT, self, request_id, None)

    def __repr__(self):
        state = "closed" if self._closed else "open"
        return f"UdpEngineSession({self._peer}, {self._credentials.version.name}, {state})"


def open_session(
    peer: Peer,
    credentials: Credentials,
    callback: EngineCallback,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    max_repetitions: int = DEFAULT_MAX_REPETITIONS,
) -> UdpEngineSession:
    """Open a UDP engine session; raises OpenFailedError."""
    session = UdpEngineSession(
        peer,
        credentials,
        callback,
        timeout=timeout,
        retries=retries,
        max_repetitions=max_repetitions,
    )
    session.open()
    return session
