"""Tests for snmploop.sync.call_sync - blocking calls on a private reactor."""

import asyncio

import pytest
from pysnmp.proto import rfc1902

from snmploop.bridge import ReactorBridge
from snmploop.constants import EngineOp, RequestKind
from snmploop.endpoint import Endpoint
from snmploop.engine import Credentials, Peer
from snmploop.errors import EncodingError, OpenFailedError, RequestError
from snmploop.reactor import SelectorReactor
from snmploop.sync import call_sync, call_sync_to
from snmploop.testing import static_responder

SYS_DESCR = (1, 3, 6, 1, 2, 1, 1, 1, 0)
SYS_NAME = (1, 3, 6, 1, 2, 1, 1, 5, 0)


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


@pytest.fixture
def reactors():
    """reactor_factory that remembers every reactor it built."""
    made = []

    def factory():
        r = SelectorReactor()
        made.append(r)
        return r

    factory.made = made
    return factory


class TestCallSync:
    def test_returns_varbinds(self, endpoint, engine):
        engine.auto_reply = static_responder({SYS_DESCR: rfc1902.OctetString(b"Linux 6.1")})
        varbinds = call_sync(endpoint, RequestKind.GET, "1.3.6.1.2.1.1.1.0")
        assert [(vb.oid, vb.value.data) for vb in varbinds] == [(SYS_DESCR, b"Linux 6.1")]

    def test_failure_raises_request_error(self, endpoint, engine):
        engine.auto_fail = EngineOp.TIMED_OUT
        with pytest.raises(RequestError) as exc_info:
            call_sync(endpoint, RequestKind.GET, SYS_DESCR)
        assert exc_info.value.reason == "timeout"

    def test_getnext_walks_forward(self, endpoint, engine):
        engine.auto_reply = static_responder(
            {SYS_DESCR: rfc1902.Integer32(0), SYS_NAME: rfc1902.OctetString(b"core1")}
        )
        varbinds = call_sync(endpoint, RequestKind.GETNEXT, SYS_DESCR)
        assert [(vb.oid, vb.value.data) for vb in varbinds] == [(SYS_NAME, b"core1")]

    def test_uses_a_fresh_session(self, endpoint, engine):
        engine.auto_reply = static_responder({SYS_DESCR: rfc1902.Integer32(1)})
        original = endpoint.session
        call_sync(endpoint, RequestKind.GET, SYS_DESCR)

        assert len(engine.sessions) == 2
        assert engine.sessions[1] is not original
        assert original.sent == []
        assert engine.sessions[1].closed
        assert not original.closed


class TestCallSyncTo:
    def test_one_throwaway_session(self, engine, reactors):
        engine.auto_reply = static_responder({SYS_DESCR: rfc1902.OctetString(b"direct")})
        varbinds = call_sync_to(
            Peer("agent.example"),
            Credentials("public"),
            RequestKind.GET,
            SYS_DESCR,
            reactor_factory=reactors,
            engine_factory=engine,
        )
        assert varbinds[0].value.data == b"direct"
        assert len(engine.sessions) == 1
        assert engine.last_session.closed
        assert reactors.made[0].closed

    def test_failure_still_tears_down(self, engine, reactors):
        engine.auto_fail = EngineOp.TIMED_OUT
        with pytest.raises(RequestError, match="timeout"):
            call_sync_to(
                Peer("agent.example"),
                Credentials("public"),
                RequestKind.GET,
                SYS_DESCR,
                reactor_factory=reactors,
                engine_factory=engine,
            )
        assert engine.last_session.closed
        assert reactors.made[0].closed


class TestTeardown:
    def test_private_reactor_closed_on_success(self, endpoint, engine, reactors):
        engine.auto_reply = static_responder({SYS_DESCR: rfc1902.Integer32(1)})
        call_sync(endpoint, RequestKind.GET, SYS_DESCR, reactor_factory=reactors)
        assert len(reactors.made) == 1
        assert reactors.made[0].closed

    def test_teardown_on_request_failure(self, endpoint, engine, reactors):
        engine.auto_fail = EngineOp.SEND_FAILED
        with pytest.raises(RequestError, match="send failed"):
            call_sync(endpoint, RequestKind.GET, SYS_DESCR, reactor_factory=reactors)
        assert reactors.made[0].closed
        assert engine.last_session.closed

    def test_teardown_on_encoding_error(self, endpoint, engine, reactors):
        with pytest.raises(EncodingError):
            call_sync(endpoint, RequestKind.GET, "not.an.oid", reactor_factory=reactors)
        assert reactors.made[0].closed
        assert engine.last_session.closed

    def test_teardown_on_open_failure(self, endpoint, engine, reactors):
        engine.fail_open = True
        with pytest.raises(OpenFailedError):
            call_sync(endpoint, RequestKind.GET, SYS_DESCR, reactor_factory=reactors)
        assert reactors.made[0].closed
        assert len(engine.sessions) == 1


class TestIsolation:
    """A blocking call never resolves or delivers the Endpoint's own async requests."""

    def test_outstanding_async_requests_untouched(self, endpoint, bridge, reactor, engine, make_recorder):
        session = engine.last_session
        recorders = [make_recorder() for _ in range(4)]
        rids = [endpoint.get(SYS_NAME, done) for done in recorders]
        # Replies for the async requests are already waiting on their socket
        for rid in rids:
            session.reply(rid, [(SYS_NAME, rfc1902.OctetString(b"async"))])

        engine.auto_reply = static_responder({SYS_DESCR: rfc1902.OctetString(b"sync")})
        varbinds = call_sync(endpoint, RequestKind.GET, SYS_DESCR)

        assert varbinds[0].value.data == b"sync"
        assert all(done.calls == [] for done in recorders)
        assert endpoint.pending_count == 4
        assert bridge.is_registered(endpoint)
        assert session.read_calls == 0
        assert session.timeout_calls == 0

        reactor.run_once(timeout=1.0)
        assert all(len(done.calls) == 1 for done in recorders)
        assert recorders[1].varbinds[0].value.data == b"async"
        assert not bridge.is_registered(endpoint)

    def test_inside_running_event_loop(self, engine, make_recorder):
        async def _test():
            ambient = ReactorBridge.for_asyncio()
            ep = Endpoint.open("agent.example", bridge=ambient, engine_factory=engine)
            pending = make_recorder()
            ep.get(SYS_NAME, pending)

            engine.auto_reply = static_responder({SYS_DESCR: rfc1902.Integer32(7)})
            varbinds = call_sync(ep, RequestKind.GET, SYS_DESCR)
            assert pending.calls == []

            ep.session.reply(ep.session.sent[0].request_id, [(SYS_NAME, rfc1902.OctetString(b"later"))])
            for _ in range(100):
                if pending.calls:
                    break
                await asyncio.sleep(0.01)
            ep.close()
            ambient.close()
            return varbinds, pending.calls

        varbinds, calls = _run(_test())
        assert varbinds[0].value.data == 7
        assert calls[0][1][0].value.data == b"later"
