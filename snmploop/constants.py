"""
SNMP session constants.

Request kinds, engine completion codes, failure reasons and the
protocol error-status table used when resolving a pending request.

Error-status texts follow net-snmp's snmp_errstring() so messages read the
same as the command-line tools.
"""

from enum import Enum, IntEnum

# Network ports
SNMP_PORT = 161  # Agent UDP port

# Timeouts / retransmission (net-snmp session defaults)
DEFAULT_TIMEOUT = 1.0  # Seconds per attempt
DEFAULT_RETRIES = 5  # Retransmissions before TIMED_OUT
DEFAULT_COMMUNITY = "public"

# GETBULK parameters
DEFAULT_NON_REPEATERS = 0
DEFAULT_MAX_REPETITIONS = 10

# Buffer sizes
RECV_BUFFER_SIZE = 65535  # Largest UDP datagram

# OID arcs are limited to 32 bits (net-snmp MAX_SUBID)
MAX_SUBID = 0xFFFFFFFF
MAX_OID_LEN = 128


class SnmpVersion(IntEnum):
    """Message versions, valued as they appear on the wire."""

    V1 = 0
    V2C = 1

    @classmethod
    def parse(cls, text: str) -> "SnmpVersion":
        value = str(text).strip().lower()
        if value in ("1", "v1"):
            return cls.V1
        if value in ("2", "2c", "v2c"):
            return cls.V2C
        raise ValueError(f"Unsupported SNMP version: {text!r} (expected 1 or 2c)")


class RequestKind(Enum):
    """Query kinds an Endpoint can issue."""

    GET = "get"
    GETNEXT = "getnext"
    GETBULK = "getbulk"


class EngineOp(IntEnum):
    """Completion codes delivered by the protocol engine callback."""

    RECEIVED = 1  # NETSNMP_CALLBACK_OP_RECEIVED_MESSAGE
    TIMED_OUT = 2  # NETSNMP_CALLBACK_OP_TIMED_OUT
    SEND_FAILED = 3  # NETSNMP_CALLBACK_OP_SEND_FAILED
    CONNECT_FAILED = 4  # NETSNMP_CALLBACK_OP_CONNECT
    DISCONNECTED = 5  # NETSNMP_CALLBACK_OP_DISCONNECT


# Failure reasons handed to continuations
REASON_TIMEOUT = "timeout"
REASON_SEND_FAILED = "send failed"
REASON_CONNECT_FAILED = "connect failed"
REASON_DISCONNECTED = "peer has disconnected"
REASON_UNKNOWN = "unknown snmp error"
REASON_BAD_VALUE_TYPE = "unexpected variable type received"

FAILURE_REASONS = {
    EngineOp.TIMED_OUT: REASON_TIMEOUT,
    EngineOp.SEND_FAILED: REASON_SEND_FAILED,
    EngineOp.CONNECT_FAILED: REASON_CONNECT_FAILED,
    EngineOp.DISCONNECTED: REASON_DISCONNECTED,
}


def failure_reason(op) -> str:
    """Map a non-RECEIVED engine operation to its failure reason."""
    return FAILURE_REASONS.get(op, REASON_UNKNOWN)


# PDU error-status values (RFC 1157 / RFC 3416)
ERR_NOERROR = 0
ERR_TOOBIG = 1
ERR_NOSUCHNAME = 2
ERR_BADVALUE = 3
ERR_READONLY = 4
ERR_GENERR = 5
ERR_NOACCESS = 6
ERR_WRONGTYPE = 7
ERR_WRONGLENGTH = 8
ERR_WRONGENCODING = 9
ERR_WRONGVALUE = 10
ERR_NOCREATION = 11
ERR_INCONSISTENTVALUE = 12
ERR_RESOURCEUNAVAILABLE = 13
ERR_COMMITFAILED = 14
ERR_UNDOFAILED = 15
ERR_AUTHORIZATIONERROR = 16
ERR_NOTWRITABLE = 17
ERR_INCONSISTENTNAME = 18

_ERROR_STATUS_MESSAGES = {
    ERR_NOERROR: "(noError) No Error",
    ERR_TOOBIG: "(tooBig) Response message would have been too large.",
    ERR_NOSUCHNAME: "(noSuchName) There is no such variable name in this MIB.",
    ERR_BADVALUE: "(badValue) The value given has the wrong type or length.",
    ERR_READONLY: "(readOnly) The two parties used do not have access to use the specified SNMP PDU.",
    ERR_GENERR: "(genError) A general failure occured",
    ERR_NOACCESS: "noAccess",
    ERR_WRONGTYPE: "wrongType (The set datatype does not match the data type the agent expects)",
    ERR_WRONGLENGTH: "wrongLength (The set value has an illegal length from what the agent expects)",
    ERR_WRONGENCODING: "wrongEncoding",
    ERR_WRONGVALUE: "wrongValue (The set value is illegal or unsupported in some way)",
    ERR_NOCREATION: "noCreation (That table does not support row creation or that object can not ever be created)",
    ERR_INCONSISTENTVALUE: "inconsistentValue (The set value is illegal or unsupported in some way)",
    ERR_RESOURCEUNAVAILABLE: "resourceUnavailable (This is likely a out-of-memory failure within the agent)",
    ERR_COMMITFAILED: "commitFailed",
    ERR_UNDOFAILED: "undoFailed",
    ERR_AUTHORIZATIONERROR: "authorizationError (access denied to that object)",
    ERR_NOTWRITABLE: "notWritable (That object does not support modification)",
    ERR_INCONSISTENTNAME: "inconsistentName (That object can not currently be created)",
}


def error_status_message(status: int) -> str:
    """Human-readable text for a PDU error-status value."""
    return _ERROR_STATUS_MESSAGES.get(status, "Unknown Error")
