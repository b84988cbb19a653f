"""
Blocking requests on top of the asynchronous core.

call_sync() never touches the caller's Endpoint socket or bridge: it clones
the Endpoint onto a private bridge driven by a private SelectorReactor, runs
that reactor until the single request resolves, then tears everything down.
Requests already outstanding on the original Endpoint are neither resolved
nor delivered while the call blocks.

call_sync_to() does the same for a bare peer, opening one throwaway Endpoint
directly on the private bridge.

SelectorReactor does not use asyncio, so call_sync() also works from inside
a running event loop (it blocks that loop for the duration of the call).
"""

import logging
from typing import Callable, Optional

from .bridge import ReactorBridge
from .constants import RequestKind
from .endpoint import Endpoint
from .engine import Credentials, Peer
from .errors import InvariantError, RequestError
from .reactor import Reactor, SelectorReactor
from .values import VarBind

logger = logging.getLogger(__name__)


def call_sync(
    endpoint: Endpoint,
    kind: RequestKind,
    oids,
    *,
    reactor_factory: Callable[[], Reactor] = SelectorReactor,
) -> list[VarBind]:
    """Run one request to completion, blocking the calling thread.

    Args:
        endpoint: Endpoint whose peer and credentials are used
        kind: GET, GETNEXT or GETBULK
        oids: A single OID or a collection of OID groups
        reactor_factory: Creates the private reactor

    Returns:
        Reply variables in reply order

    Raises:
        RequestError: The request failed (reason holds the failure string)
        EncodingError, SendFailedError, OpenFailedError: Raised before waiting
    """
    return _run_private(endpoint.clone, kind, oids, reactor_factory)


def call_sync_to(
    peer: Peer,
    credentials: Credentials,
    kind: RequestKind,
    oids,
    *,
    reactor_factory: Callable[[], Reactor] = SelectorReactor,
    **options,
) -> list[VarBind]:
    """Like call_sync(), for a peer with no long-lived Endpoint.

    Opens a single throwaway Endpoint directly on the private bridge.
    options are passed to Endpoint (timeout, retries, max_repetitions,
    engine_factory).
    """

    def _open(bridge: ReactorBridge) -> Endpoint:
        return Endpoint(peer, credentials, bridge, **options, is_clone=True)

    return _run_private(_open, kind, oids, reactor_factory)


def _run_private(
    open_endpoint: Callable[[ReactorBridge], Endpoint],
    kind: RequestKind,
    oids,
    reactor_factory: Callable[[], Reactor],
) -> list[VarBind]:
    reactor = reactor_factory()
    bridge = ReactorBridge(reactor)
    private: Optional[Endpoint] = None
    outcome: dict = {}

    def _complete(error: Optional[str], varbinds: Optional[list[VarBind]]):
        outcome["error"] = error
        outcome["varbinds"] = varbinds
        reactor.stop()

    try:
        private = open_endpoint(bridge)
        private.send(kind, oids, _complete)
        logger.debug(f"Blocking on {kind.name} to {private.peer}")
        reactor.run()
    finally:
        if private is not None:
            private.close()
        bridge.close()
        reactor.close()

    if not outcome:
        raise InvariantError("private reactor stopped before the request resolved")
    if outcome["error"] is not None:
        raise RequestError(outcome["error"])
    return outcome["varbinds"]
