"""Numeric OID helpers - parsing, formatting and request argument normalization."""

from typing import Sequence, Union

from .constants import MAX_OID_LEN, MAX_SUBID
from .errors import EncodingError

Oid = tuple[int, ...]
OidSpec = Union[str, Sequence[int]]


def parse_oid(text: str) -> Oid:
    """Parse a numeric dotted OID ("1.3.6.1.2.1.1.1.0" or ".1.3.6...")."""
    if not isinstance(text, str):
        raise EncodingError("invalid arguments - string expected")
    stripped = text.strip()
    if stripped.startswith("."):
        stripped = stripped[1:]
    if not stripped:
        raise EncodingError("invalid argument - empty oid")
    arcs = []
    for part in stripped.split("."):
        if not (part.isascii() and part.isdigit()):
            raise EncodingError(f"invalid arguments - cannot parse oid {text!r}")
        arcs.append(int(part))
    return _check_arcs(arcs)


def format_oid(oid: Sequence[int]) -> str:
    return ".".join(str(arc) for arc in oid)


def _check_arcs(arcs) -> Oid:
    if len(arcs) == 0:
        raise EncodingError("invalid argument - empty oid")
    if len(arcs) > MAX_OID_LEN:
        raise EncodingError(f"invalid oid - more than {MAX_OID_LEN} arcs")
    for arc in arcs:
        # bool is an int subclass but never a valid arc
        if isinstance(arc, bool) or not isinstance(arc, int):
            raise EncodingError("invalid oid - non-integer member")
        if arc < 0 or arc > MAX_SUBID:
            raise EncodingError(f"invalid oid - arc {arc} outside 0..{MAX_SUBID}")
    return tuple(arcs)


def _to_oid(spec) -> Oid:
    if isinstance(spec, str):
        return parse_oid(spec)
    if isinstance(spec, (bytes, bytearray)) or not isinstance(spec, Sequence):
        raise EncodingError("invalid argument - not an array")
    return _check_arcs(list(spec))


def normalize_oids(oids) -> list[Oid]:
    """Normalize request OID arguments into a list of OIDs.

    Accepts either a single OID (a sequence of ints or a dotted string),
    which yields one variable, or a collection of OID groups (sequence of
    sequences / strings), which yields one variable per group in the same
    query.
    """
    if isinstance(oids, str):
        return [parse_oid(oids)]
    if isinstance(oids, (bytes, bytearray)) or not isinstance(oids, Sequence):
        raise EncodingError("invalid arguments - oid must be a sequence")
    if len(oids) == 0:
        raise EncodingError("invalid argument - empty oid")

    first = oids[0]
    if isinstance(first, (str, Sequence)) and not isinstance(first, (bytes, bytearray)):
        return [_to_oid(group) for group in oids]
    return [_check_arcs(list(oids))]
