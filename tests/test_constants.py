"""Tests for snmploop.constants and snmploop.errors."""

import pytest

from snmploop.constants import (
    ERR_GENERR,
    ERR_NOERROR,
    ERR_NOSUCHNAME,
    ERR_TOOBIG,
    EngineOp,
    SnmpVersion,
    error_status_message,
    failure_reason,
)
from snmploop.errors import (
    EncodingError,
    InvariantError,
    OpenFailedError,
    RequestError,
    SendFailedError,
    SnmpLoopError,
)


class TestFailureReason:
    @pytest.mark.parametrize(
        "op, reason",
        [
            (EngineOp.TIMED_OUT, "timeout"),
            (EngineOp.SEND_FAILED, "send failed"),
            (EngineOp.CONNECT_FAILED, "connect failed"),
            (EngineOp.DISCONNECTED, "peer has disconnected"),
        ],
    )
    def test_known_ops(self, op, reason):
        assert failure_reason(op) == reason

    def test_plain_int_matches_enum(self):
        assert failure_reason(2) == "timeout"

    def test_unknown_op(self):
        assert failure_reason(99) == "unknown snmp error"


class TestErrorStatusMessage:
    def test_no_such_name(self):
        assert "noSuchName" in error_status_message(ERR_NOSUCHNAME)

    def test_too_big(self):
        assert error_status_message(ERR_TOOBIG).startswith("(tooBig)")

    def test_gen_err(self):
        assert "genError" in error_status_message(ERR_GENERR)

    def test_no_error(self):
        assert error_status_message(ERR_NOERROR) == "(noError) No Error"

    @pytest.mark.parametrize("status", [19, -1, 1000])
    def test_unknown(self, status):
        assert error_status_message(status) == "Unknown Error"


class TestSnmpVersion:
    @pytest.mark.parametrize("text", ["1", "v1", "V1", " 1 "])
    def test_v1(self, text):
        assert SnmpVersion.parse(text) is SnmpVersion.V1

    @pytest.mark.parametrize("text", ["2", "2c", "v2c", "2C"])
    def test_v2c(self, text):
        assert SnmpVersion.parse(text) is SnmpVersion.V2C

    def test_v3_rejected(self):
        with pytest.raises(ValueError, match="Unsupported SNMP version"):
            SnmpVersion.parse("3")

    def test_wire_values(self):
        assert int(SnmpVersion.V1) == 0
        assert int(SnmpVersion.V2C) == 1


class TestErrors:
    def test_hierarchy(self):
        for cls in (OpenFailedError, EncodingError, SendFailedError, RequestError, InvariantError):
            assert issubclass(cls, SnmpLoopError)

    def test_invariant_error_is_assertion(self):
        assert issubclass(InvariantError, AssertionError)

    def test_encoding_error_is_value_error(self):
        assert issubclass(EncodingError, ValueError)

    def test_open_failed_message(self):
        err = OpenFailedError("agent:161", "cannot resolve host")
        assert err.peer == "agent:161"
        assert str(err) == "cannot open snmp session to agent:161: cannot resolve host"
        assert repr(err) == "OpenFailedError(peer='agent:161')"

    def test_open_failed_without_detail(self):
        assert str(OpenFailedError("agent:161")) == "cannot open snmp session to agent:161"

    def test_send_failed_default_message(self):
        assert str(SendFailedError()) == "cannot send query"

    def test_request_error_reason(self):
        err = RequestError("timeout")
        assert err.reason == "timeout"
        assert str(err) == "timeout"
        assert repr(err) == "RequestError('timeout')"
