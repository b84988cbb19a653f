"""
Shared pytest fixtures for snmploop unit tests.

Endpoints here run on a FakeEngine (no SNMP agent needed) and a private
SelectorReactor that tests drive one iteration at a time with run_once().
Tests of the real UDP engine talk to FakeAgent, a loopback socket that
answers like an SNMP agent.
"""

import socket
import threading

import pytest
from pyasn1.codec.ber import decoder, encoder
from pysnmp.proto import api

from snmploop.bridge import ReactorBridge
from snmploop.constants import SnmpVersion
from snmploop.endpoint import Endpoint
from snmploop.engine import Credentials, Peer
from snmploop.reactor import SelectorReactor
from snmploop.testing import FakeEngine


class FakeAgent:
    """Loopback UDP socket answering as an SNMP agent would.

    Tests either script it step by step (receive() then respond()) or call
    serve() to answer every query from a background thread.
    """

    def __init__(self, version=SnmpVersion.V2C):
        self.p_mod = api.PROTOCOL_MODULES[int(version)]
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(2.0)
        self.last_addr = None
        self.queries = []
        self._stopping = threading.Event()
        self._thread = None

    @property
    def peer(self) -> Peer:
        return Peer("127.0.0.1", self.sock.getsockname()[1])

    def receive(self):
        """Return (community, pdu, raw bytes) of the next query."""
        data, self.last_addr = self.sock.recvfrom(65535)
        msg, _rest = decoder.decode(data, asn1Spec=self.p_mod.Message())
        community = self.p_mod.apiMessage.get_community(msg).asOctets()
        return community, self.p_mod.apiMessage.get_pdu(msg), data

    def build(self, request_id, varbinds, community=b"public", error_status=0, error_index=0, pdu=None):
        p_mod = self.p_mod
        if pdu is None:
            pdu = p_mod.GetResponsePDU()
        p_mod.apiPDU.set_defaults(pdu)
        p_mod.apiPDU.set_request_id(pdu, request_id)
        p_mod.apiPDU.set_error_status(pdu, error_status)
        p_mod.apiPDU.set_error_index(pdu, error_index)
        p_mod.apiPDU.set_varbinds(pdu, varbinds)
        msg = p_mod.Message()
        p_mod.apiMessage.set_defaults(msg)
        p_mod.apiMessage.set_community(msg, community)
        p_mod.apiMessage.set_pdu(msg, pdu)
        return encoder.encode(msg)

    def respond(self, request_id, varbinds, **kwargs):
        self.sock.sendto(self.build(request_id, varbinds, **kwargs), self.last_addr)

    def send_raw(self, data):
        self.sock.sendto(data, self.last_addr)

    def serve(self, answer):
        """Answer queries in a background thread.

        answer(oids) returns the reply varbinds, or None to stay silent.
        Every query's OID list is appended to self.queries.
        """
        self.sock.settimeout(0.05)
        self._thread = threading.Thread(target=self._serve, args=(answer,), daemon=True)
        self._thread.start()

    def _serve(self, answer):
        while not self._stopping.is_set():
            try:
                _community, pdu, _data = self.receive()
            except socket.timeout:
                continue
            except OSError:
                break
            oids = [tuple(oid) for oid, _value in self.p_mod.apiPDU.get_varbinds(pdu)]
            self.queries.append(oids)
            varbinds = answer(oids)
            if varbinds is not None:
                self.respond(int(self.p_mod.apiPDU.get_request_id(pdu)), varbinds)

    def close(self):
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
        self.sock.close()


@pytest.fixture
def agent():
    """FakeAgent on an ephemeral loopback port, closed after the test."""
    a = FakeAgent()
    yield a
    a.close()


class Recorder:
    """Continuation that records every (error, varbinds) call."""

    def __init__(self, on_call=None):
        self.calls = []
        self._on_call = on_call

    def __call__(self, error, varbinds):
        self.calls.append((error, varbinds))
        if self._on_call is not None:
            self._on_call(error, varbinds)

    @property
    def error(self):
        return self.calls[-1][0]

    @property
    def varbinds(self):
        return self.calls[-1][1]


@pytest.fixture
def make_recorder():
    """Factory for recording continuations."""
    return Recorder


@pytest.fixture
def reactor():
    """Private SelectorReactor, closed after the test."""
    r = SelectorReactor()
    yield r
    r.close()


@pytest.fixture
def bridge(reactor):
    b = ReactorBridge(reactor)
    yield b
    b.close()


@pytest.fixture
def engine():
    """FakeEngine; every session it opened is closed after the test."""
    e = FakeEngine()
    yield e
    e.close_all()


@pytest.fixture
def endpoint(bridge, engine):
    """Endpoint to a fake agent on the private bridge."""
    return Endpoint.open("agent.example", Credentials("public"), bridge, engine_factory=engine)
