"""snmploop-get -- Query an SNMP agent with GET, GETNEXT or GETBULK."""

import logging
import sys

import snmploop
from snmploop.cli._common import (
    EXIT_INTERRUPTED,
    EXIT_OK,
    EXIT_REQUEST_ERROR,
    EXIT_USAGE_ERROR,
    OPERATIONS,
    base_parser,
    format_error,
    format_varbind,
    session_kwargs,
)
from snmploop.errors import EncodingError, OpenFailedError, RequestError, SendFailedError
from snmploop.oid import parse_oid


def main() -> int:
    parser = base_parser("Query SNMP agent values")
    parser.add_argument("host", metavar="HOST", help="agent address (host, host:port, udp6:[addr]:port)")
    parser.add_argument("oids", nargs="+", metavar="OID", help="numeric OID(s), e.g. 1.3.6.1.2.1.1.1.0")
    parser.add_argument("--op", choices=tuple(OPERATIONS), default="get", help="request type (default: get)")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    try:
        oids = [parse_oid(text) for text in args.oids]
    except EncodingError as e:
        print(f"Invalid OID: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    kind = OPERATIONS[args.op]
    if kind is snmploop.RequestKind.GETBULK and args.version == "1":
        print("Error: GETBULK requires SNMP version 2c", file=sys.stderr)
        return EXIT_USAGE_ERROR

    fmt = "terse" if args.terse else args.output_format

    try:
        varbinds = snmploop.request_sync(args.host, kind, oids, args.community, **session_kwargs(args))
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except RequestError as e:
        print(format_error(args.host, e.reason, fmt=fmt, oids=args.oids))
        return EXIT_REQUEST_ERROR
    except OpenFailedError as e:
        print(f"Connection error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR
    except (EncodingError, SendFailedError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    for varbind in varbinds:
        print(format_varbind(varbind, fmt=fmt))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
