"""Tests for snmploop configuration: env helpers, configure() and the factories."""

import pytest
from pysnmp.proto import rfc1902

import snmploop
from snmploop import (
    Credentials,
    OpenFailedError,
    Peer,
    RequestError,
    RequestKind,
    SnmpVersion,
    configure,
    open_endpoint,
    request_sync,
    reset_config,
)
from snmploop.constants import EngineOp
from snmploop.testing import FakeEngine, static_responder

SYS_DESCR = (1, 3, 6, 1, 2, 1, 1, 1, 0)


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Each test starts with no configure() overrides and no env values."""
    for name in ("_env_community", "_env_port", "_env_timeout", "_env_retries", "_env_version"):
        monkeypatch.setattr(snmploop, name, None)
    reset_config()
    yield
    reset_config()


def _settings(**overrides):
    args = {"community": None, "port": None, "timeout": None, "retries": None, "version": None}
    args.update(overrides)
    return snmploop._resolve_settings(**args)


class TestEnvHelpers:
    def test_int_unset_returns_default(self, monkeypatch):
        monkeypatch.delenv("SNMPLOOP_TEST_INT", raising=False)
        assert snmploop._get_env_int("SNMPLOOP_TEST_INT", 7) == 7

    def test_int_parsed(self, monkeypatch):
        monkeypatch.setenv("SNMPLOOP_TEST_INT", "1161")
        assert snmploop._get_env_int("SNMPLOOP_TEST_INT") == 1161

    def test_int_invalid(self, monkeypatch):
        monkeypatch.setenv("SNMPLOOP_TEST_INT", "lots")
        with pytest.raises(ValueError, match="SNMPLOOP_TEST_INT must be an integer"):
            snmploop._get_env_int("SNMPLOOP_TEST_INT")

    def test_float_invalid(self, monkeypatch):
        monkeypatch.setenv("SNMPLOOP_TEST_FLOAT", "soon")
        with pytest.raises(ValueError, match="must be a number"):
            snmploop._get_env_float("SNMPLOOP_TEST_FLOAT")

    def test_version_parsed(self, monkeypatch):
        monkeypatch.setenv("SNMPLOOP_TEST_VERSION", "v1")
        assert snmploop._get_env_version("SNMPLOOP_TEST_VERSION") is SnmpVersion.V1

    def test_version_invalid(self, monkeypatch):
        monkeypatch.setenv("SNMPLOOP_TEST_VERSION", "3")
        with pytest.raises(ValueError, match="must be 1 or 2c"):
            snmploop._get_env_version("SNMPLOOP_TEST_VERSION")


class TestConfigure:
    def test_defaults(self):
        assert _settings() == {
            "community": "public",
            "port": 161,
            "timeout": 1.0,
            "retries": 5,
            "version": SnmpVersion.V2C,
        }

    def test_configure_overrides_defaults(self):
        configure(community="private", port=1161, timeout=0.5, retries=0, version="1")
        settings = _settings()
        assert settings["community"] == "private"
        assert settings["port"] == 1161
        assert settings["timeout"] == 0.5
        assert settings["retries"] == 0
        assert settings["version"] is SnmpVersion.V1

    def test_configure_is_partial(self):
        configure(port=1161)
        configure(retries=2)
        settings = _settings()
        assert (settings["port"], settings["retries"]) == (1161, 2)

    def test_precedence(self, monkeypatch):
        monkeypatch.setattr(snmploop, "_env_community", "from-env")
        monkeypatch.setattr(snmploop, "_env_port", 2161)
        assert _settings()["community"] == "from-env"

        configure(community="from-configure")
        assert _settings()["community"] == "from-configure"
        assert _settings(community="explicit")["community"] == "explicit"
        assert _settings()["port"] == 2161

    def test_reset_keeps_environment(self, monkeypatch):
        monkeypatch.setattr(snmploop, "_env_timeout", 3.0)
        configure(timeout=0.2)
        reset_config()
        assert _settings()["timeout"] == 3.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"port": 0}, {"port": 65536}, {"timeout": 0}, {"timeout": -1.0}, {"retries": -1}, {"version": "3"}],
    )
    def test_rejects_bad_values(self, kwargs):
        with pytest.raises(ValueError):
            configure(**kwargs)
        assert _settings()["port"] == 161


class TestOpenEndpoint:
    def test_applies_resolved_settings(self, bridge):
        engine = FakeEngine()
        configure(community="private", retries=1)
        ep = open_endpoint("agent.example", bridge=bridge, timeout=0.25, engine_factory=engine)
        try:
            assert ep.peer == Peer("agent.example", 161)
            assert ep.credentials == Credentials("private", SnmpVersion.V2C)
            assert ep.session is engine.last_session
            assert ep.session.credentials.community == "private"
        finally:
            ep.close()

    def test_engine_factory_gets_timeouts(self, bridge):
        calls = []

        def factory(peer, credentials, callback, **kwargs):
            calls.append(kwargs)
            return FakeEngine()(peer, credentials, callback, **kwargs)

        ep = open_endpoint(
            "agent.example", bridge=bridge, timeout=2.5, retries=3, max_repetitions=25, engine_factory=factory
        )
        ep.close()
        assert calls == [{"timeout": 2.5, "retries": 3, "max_repetitions": 25}]

    def test_port_applies_when_peer_has_none(self, bridge):
        engine = FakeEngine()
        with open_endpoint("agent.example", bridge=bridge, port=1161, engine_factory=engine) as ep:
            assert ep.peer.port == 1161
        with open_endpoint("agent.example:2000", bridge=bridge, port=1161, engine_factory=engine) as ep:
            assert ep.peer.port == 2000

    def test_bad_peer_name(self, bridge):
        with pytest.raises(OpenFailedError):
            open_endpoint("tcp:agent.example:161", bridge=bridge, engine_factory=FakeEngine())

    def test_requires_loop_without_bridge(self):
        with pytest.raises(RuntimeError):
            open_endpoint("agent.example", engine_factory=FakeEngine())


class TestRequestSync:
    def test_returns_varbinds(self):
        engine = FakeEngine(auto_reply=static_responder({SYS_DESCR: rfc1902.OctetString(b"Linux")}))
        varbinds = request_sync("agent.example", RequestKind.GET, SYS_DESCR, engine_factory=engine)
        assert varbinds[0].value.data == b"Linux"
        assert all(session.closed for session in engine.sessions)

    def test_opens_a_single_session(self):
        engine = FakeEngine(auto_reply=static_responder({SYS_DESCR: rfc1902.Integer32(1)}))
        configure(community="private")
        request_sync("agent.example:1161", RequestKind.GET, SYS_DESCR, retries=0, engine_factory=engine)

        assert len(engine.sessions) == 1
        session = engine.last_session
        assert session.peer == Peer("agent.example", 1161)
        assert session.credentials == Credentials("private", SnmpVersion.V2C)
        assert session.closed

    def test_bad_peer_name(self):
        engine = FakeEngine()
        with pytest.raises(OpenFailedError):
            request_sync("tcp:agent.example", RequestKind.GET, SYS_DESCR, engine_factory=engine)
        assert engine.sessions == []

    def test_failure_raises(self):
        engine = FakeEngine(auto_fail=EngineOp.TIMED_OUT)
        with pytest.raises(RequestError, match="timeout"):
            request_sync("agent.example", RequestKind.GET, SYS_DESCR, engine_factory=engine)
        assert all(session.closed for session in engine.sessions)
