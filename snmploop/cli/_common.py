"""Shared CLI infrastructure for snmploop-get."""

import argparse
import json
from typing import Any, Optional

from snmploop.constants import RequestKind
from snmploop.oid import format_oid
from snmploop.values import Value, ValueKind, VarBind

# Exit codes
EXIT_OK = 0
EXIT_REQUEST_ERROR = 1
EXIT_USAGE_ERROR = 2
EXIT_INTERRUPTED = 130

OPERATIONS = {
    "get": RequestKind.GET,
    "next": RequestKind.GETNEXT,
    "bulk": RequestKind.GETBULK,
}

# snmpwalk-style type labels
_TYPE_LABELS = {
    "Integer": "INTEGER",
    "Integer32": "INTEGER",
    "Unsigned32": "Gauge32",
    "OctetString": "STRING",
    "ObjectIdentifier": "OID",
    "ObjectName": "OID",
}

_EXCEPTION_TEXTS = {
    "NoSuchObject": "No Such Object available on this agent at this OID",
    "NoSuchInstance": "No Such Instance currently exists at this OID",
    "EndOfMibView": "No more variables left in this MIB View (It is past the end of the MIB tree)",
}


def base_parser(description: str) -> argparse.ArgumentParser:
    """Create ArgumentParser with the session flags shared by all CLI tools."""
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("-c", "--community", default=None, help="community string (default: public)")
    parser.add_argument("-p", "--port", type=int, default=None, help="agent UDP port (default: 161)")
    parser.add_argument("--timeout", type=float, default=None, help="seconds per attempt (default: 1.0)")
    parser.add_argument("--retries", type=int, default=None, help="retransmissions before timing out (default: 5)")
    parser.add_argument("-V", "--snmp-version", dest="version", choices=("1", "2c"), default=None, help="SNMP version")
    parser.add_argument(
        "--format", dest="output_format", choices=("text", "json"), default="text", help="output format"
    )
    parser.add_argument("-t", "--terse", action="store_true", help="terse output (bare values)")
    parser.add_argument("-v", "--verbose", action="store_true", help="verbose output")
    return parser


def session_kwargs(args) -> dict[str, Any]:
    """Collect open_endpoint() keyword arguments from parsed args."""
    kwargs: dict[str, Any] = {}
    for name in ("port", "timeout", "retries", "version"):
        value = getattr(args, name, None)
        if value is not None:
            kwargs[name] = value
    return kwargs


def type_label(value: Value) -> str:
    return _TYPE_LABELS.get(value.type_name, value.type_name or value.kind.value.upper())


def _is_printable(data: bytes) -> bool:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return all(ch.isprintable() or ch in "\r\n\t" for ch in text)


def format_value(value: Value) -> str:
    """Format a decoded value the way snmpget prints it (without the type label)."""
    if value.kind is ValueKind.NULL:
        return _EXCEPTION_TEXTS.get(value.type_name, "NULL")
    if value.kind is ValueKind.NUMBER:
        return str(value.data)
    if value.kind is ValueKind.OID:
        return format_oid(value.data)
    if value.type_name == "IpAddress" and len(value.data) == 4:
        return ".".join(str(octet) for octet in value.data)
    if value.kind is ValueKind.TEXT and _is_printable(value.data):
        return value.data.decode("utf-8")
    return value.data.hex(" ").upper()


def _json_value(value: Value) -> Any:
    if value.kind is ValueKind.OID:
        return format_oid(value.data)
    if isinstance(value.data, bytes):
        return format_value(value)
    return value.data


def format_varbind(varbind: VarBind, *, fmt: str) -> str:
    """Format one reply variable.

    fmt="terse": bare value.
    fmt="json": JSON dict with oid/type/value.
    fmt="text": "OID = TYPE: value" like the net-snmp tools.
    """
    oid = format_oid(varbind.oid)
    value = varbind.value

    if fmt == "json":
        return json.dumps({"oid": oid, "type": type_label(value), "value": _json_value(value)})
    if fmt == "terse":
        return format_value(value)
    if value.is_null:
        return f"{oid} = {format_value(value)}"
    if value.kind is ValueKind.TEXT and not _is_printable(value.data):
        return f"{oid} = Hex-STRING: {format_value(value)}"
    return f"{oid} = {type_label(value)}: {format_value(value)}"


def format_error(host: str, reason: str, *, fmt: str, oids: Optional[list[str]] = None) -> str:
    """Format a request failure."""
    if fmt == "json":
        return json.dumps({"host": host, "ok": False, "error": reason, "oids": oids or []})
    if fmt == "terse":
        return f"[ERROR] {reason}"
    return f"{host}: [ERROR] {reason}"
