"""
Typed-value codec - maps decoded reply variables onto host values.

Every variable in a reply is turned into a Value tagged with one of five
kinds, mirroring how snmpwalk prints them:

- NUMBER: INTEGER, Counter32, Gauge32, Unsigned32, TimeTicks, Counter64 -> int
- TEXT:   plain OCTET STRING -> bytes (agents do not promise an encoding)
- OID:    OBJECT IDENTIFIER -> tuple of ints
- RAW:    IpAddress, Opaque and other application-tagged strings -> bytes
- NULL:   NULL and the v2c exception values (noSuchObject, noSuchInstance,
          endOfMibView) -> None; type_name tells them apart
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from pyasn1.error import PyAsn1Error
from pyasn1.type import univ

from .errors import ValueDecodeError
from .oid import Oid


class ValueKind(Enum):
    NUMBER = "number"
    TEXT = "text"
    OID = "oid"
    RAW = "raw"
    NULL = "null"


@dataclass(frozen=True)
class Value:
    """A decoded variable value."""

    kind: ValueKind
    data: Any
    type_name: str = ""

    @property
    def is_null(self) -> bool:
        return self.kind is ValueKind.NULL


@dataclass(frozen=True)
class VarBind:
    """One (oid, value) pair of a reply, in reply order."""

    oid: Oid
    value: Value


def decode_value(asn1_value) -> Value:
    """Decode one pyasn1 value from a reply variable binding."""
    type_name = type(asn1_value).__name__

    # SNMPv1 NetworkAddress is a CHOICE wrapping IpAddress
    if isinstance(asn1_value, univ.Choice):
        try:
            inner = asn1_value.getComponent()
        except PyAsn1Error as e:
            raise ValueDecodeError(f"empty {type_name} value") from e
        return decode_value(inner)

    if isinstance(asn1_value, univ.Null):
        return Value(ValueKind.NULL, None, type_name)
    if isinstance(asn1_value, univ.Integer):
        return Value(ValueKind.NUMBER, int(asn1_value), type_name)
    if isinstance(asn1_value, univ.ObjectIdentifier):
        return Value(ValueKind.OID, tuple(int(arc) for arc in asn1_value), type_name)
    if isinstance(asn1_value, univ.OctetString):
        data = asn1_value.asOctets()
        if asn1_value.tagSet == univ.OctetString.tagSet:
            return Value(ValueKind.TEXT, data, type_name)
        return Value(ValueKind.RAW, data, type_name)

    raise ValueDecodeError(f"unexpected variable type {type_name} received")


def decode_varbinds(pairs: Iterable[tuple[Oid, Any]]) -> list[VarBind]:
    """Decode (oid, asn1 value) pairs into VarBinds, preserving order."""
    return [VarBind(tuple(oid), decode_value(value)) for oid, value in pairs]
