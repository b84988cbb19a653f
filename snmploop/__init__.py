"""
snmploop - asynchronous SNMP (v1/v2c) client sessions on a shared event loop.

Quick start:
    import asyncio
    import snmploop

    async def main():
        with snmploop.open_endpoint("192.0.2.10", "public") as ep:
            for vb in await ep.request(snmploop.RequestKind.GET, "1.3.6.1.2.1.1.5.0"):
                print(snmploop.format_oid(vb.oid), vb.value.data)

    asyncio.run(main())

Blocking one-off requests:
    varbinds = snmploop.request_sync("192.0.2.10", snmploop.RequestKind.GET, "1.3.6.1.2.1.1.3.0")

Environment variables (read at import):
    SNMPLOOP_COMMUNITY  community string (default: public)
    SNMPLOOP_PORT       agent UDP port (default: 161)
    SNMPLOOP_TIMEOUT    seconds per attempt (default: 1.0)
    SNMPLOOP_RETRIES    retransmissions before timing out (default: 5)
    SNMPLOOP_VERSION    1 or 2c (default: 2c)
"""

import logging
import os
import threading
from typing import Optional, Union

from snmploop.bridge import ReactorBridge, bridge_for_loop
from snmploop.constants import (
    DEFAULT_COMMUNITY,
    DEFAULT_MAX_REPETITIONS,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    SNMP_PORT,
    EngineOp,
    RequestKind,
    SnmpVersion,
    error_status_message,
)
from snmploop.endpoint import Endpoint, PendingRequest, RequestQueue
from snmploop.engine import Credentials, Peer
from snmploop.errors import (
    EncodingError,
    InvariantError,
    OpenFailedError,
    RequestError,
    SendFailedError,
    SnmpLoopError,
    ValueDecodeError,
)
from snmploop.oid import format_oid, normalize_oids, parse_oid
from snmploop.reactor import AsyncioReactor, Reactor, SelectorReactor
from snmploop.sync import call_sync, call_sync_to
from snmploop.values import Value, ValueKind, VarBind

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Environment Variables (read at import)
# ─────────────────────────────────────────────────────────────────────────────


def _get_env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    """Get environment variable as int."""
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {val!r}")


def _get_env_float(name: str, default: Optional[float] = None) -> Optional[float]:
    """Get environment variable as float."""
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {val!r}")


def _get_env_version(name: str) -> Optional[SnmpVersion]:
    """Get environment variable as SnmpVersion."""
    val = os.environ.get(name)
    if val is None:
        return None
    try:
        return SnmpVersion.parse(val)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be 1 or 2c, got {val!r}")


# Read environment variables at import time
_env_community = os.environ.get("SNMPLOOP_COMMUNITY")
_env_port = _get_env_int("SNMPLOOP_PORT")
_env_timeout = _get_env_float("SNMPLOOP_TIMEOUT")
_env_retries = _get_env_int("SNMPLOOP_RETRIES")
_env_version = _get_env_version("SNMPLOOP_VERSION")


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────

_config_lock = threading.Lock()

# User-configured settings (set via configure())
_config_community: Optional[str] = None
_config_port: Optional[int] = None
_config_timeout: Optional[float] = None
_config_retries: Optional[int] = None
_config_version: Optional[SnmpVersion] = None


def configure(
    community: Optional[str] = None,
    port: Optional[int] = None,
    timeout: Optional[float] = None,
    retries: Optional[int] = None,
    version: Union[SnmpVersion, str, None] = None,
) -> None:
    """Configure snmploop defaults for endpoints opened afterwards.

    Args:
        community: Community string (default: from SNMPLOOP_COMMUNITY or public)
        port: Agent UDP port (default: from SNMPLOOP_PORT or 161)
        timeout: Seconds per attempt (default: from SNMPLOOP_TIMEOUT or 1.0)
        retries: Retransmissions before timing out (default: from SNMPLOOP_RETRIES or 5)
        version: SnmpVersion or "1" / "2c" (default: from SNMPLOOP_VERSION or 2c)

    Raises:
        ValueError: On out-of-range values
    """
    global _config_community, _config_port, _config_timeout, _config_retries, _config_version

    if port is not None and not 0 < port < 65536:
        raise ValueError(f"port must be 1-65535, got {port}")
    if timeout is not None and timeout <= 0:
        raise ValueError(f"timeout must be positive, got {timeout}")
    if retries is not None and retries < 0:
        raise ValueError(f"retries must be non-negative, got {retries}")
    if version is not None and not isinstance(version, SnmpVersion):
        version = SnmpVersion.parse(version)

    with _config_lock:
        if community is not None:
            _config_community = community
        if port is not None:
            _config_port = port
        if timeout is not None:
            _config_timeout = timeout
        if retries is not None:
            _config_retries = retries
        if version is not None:
            _config_version = version


def reset_config() -> None:
    """Drop every configure() override (environment values still apply)."""
    global _config_community, _config_port, _config_timeout, _config_retries, _config_version

    with _config_lock:
        _config_community = None
        _config_port = None
        _config_timeout = None
        _config_retries = None
        _config_version = None


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def _resolve_settings(
    community: Optional[str],
    port: Optional[int],
    timeout: Optional[float],
    retries: Optional[int],
    version: Union[SnmpVersion, str, None],
) -> dict:
    """Explicit argument > configure() > environment > default."""
    if version is not None and not isinstance(version, SnmpVersion):
        version = SnmpVersion.parse(version)
    with _config_lock:
        return {
            "community": _first(community, _config_community, _env_community, DEFAULT_COMMUNITY),
            "port": _first(port, _config_port, _env_port, SNMP_PORT),
            "timeout": _first(timeout, _config_timeout, _env_timeout, DEFAULT_TIMEOUT),
            "retries": _first(retries, _config_retries, _env_retries, DEFAULT_RETRIES),
            "version": _first(version, _config_version, _env_version, SnmpVersion.V2C),
        }


# ─────────────────────────────────────────────────────────────────────────────
# Factories
# ─────────────────────────────────────────────────────────────────────────────


def open_endpoint(
    peer: Union[Peer, str],
    community: Optional[str] = None,
    *,
    bridge: Optional[ReactorBridge] = None,
    port: Optional[int] = None,
    timeout: Optional[float] = None,
    retries: Optional[int] = None,
    version: Union[SnmpVersion, str, None] = None,
    max_repetitions: int = DEFAULT_MAX_REPETITIONS,
    **options,
) -> Endpoint:
    """Open an Endpoint using configured defaults.

    Args:
        peer: Peer or peer name ("host", "host:port", "udp6:[::1]:1161")
        community: Community string
        bridge: Bridge to register with (default: the running loop's shared bridge)
        port: Agent port when the peer name has none
        timeout: Seconds per attempt
        retries: Retransmissions before timing out
        version: SNMP version (1 or 2c)
        max_repetitions: GETBULK max-repetitions
        **options: Passed to Endpoint (e.g. engine_factory)

    Raises:
        OpenFailedError: If the peer cannot be parsed or the session cannot be opened
        RuntimeError: If no bridge is given and no asyncio loop is running
    """
    peer, credentials, settings = _peer_and_credentials(peer, community, port, timeout, retries, version)
    if bridge is None:
        bridge = bridge_for_loop()

    return Endpoint.open(
        peer,
        credentials,
        bridge,
        timeout=settings["timeout"],
        retries=settings["retries"],
        max_repetitions=max_repetitions,
        **options,
    )


def request_sync(
    peer: Union[Peer, str],
    kind: RequestKind,
    oids,
    community: Optional[str] = None,
    *,
    port: Optional[int] = None,
    timeout: Optional[float] = None,
    retries: Optional[int] = None,
    version: Union[SnmpVersion, str, None] = None,
    max_repetitions: int = DEFAULT_MAX_REPETITIONS,
    **options,
) -> list[VarBind]:
    """Run one blocking request against a peer on a throwaway session.

    Accepts the same keyword arguments as open_endpoint() (except bridge).

    Raises:
        RequestError: The request failed
        OpenFailedError, EncodingError, SendFailedError: Before waiting
    """
    peer, credentials, settings = _peer_and_credentials(peer, community, port, timeout, retries, version)
    return call_sync_to(
        peer,
        credentials,
        kind,
        oids,
        timeout=settings["timeout"],
        retries=settings["retries"],
        max_repetitions=max_repetitions,
        **options,
    )


def _peer_and_credentials(peer, community, port, timeout, retries, version):
    settings = _resolve_settings(community, port, timeout, retries, version)
    if isinstance(peer, str):
        try:
            peer = Peer.parse(peer, default_port=settings["port"])
        except ValueError as e:
            raise OpenFailedError(peer, str(e)) from e
    return peer, Credentials(settings["community"], settings["version"]), settings


__all__ = [
    # Version
    "__version__",
    # Configuration / factories
    "configure",
    "reset_config",
    "open_endpoint",
    "request_sync",
    # Core
    "Endpoint",
    "PendingRequest",
    "RequestQueue",
    "ReactorBridge",
    "bridge_for_loop",
    "call_sync",
    "call_sync_to",
    # Reactors
    "Reactor",
    "SelectorReactor",
    "AsyncioReactor",
    # Types
    "Peer",
    "Credentials",
    "RequestKind",
    "EngineOp",
    "SnmpVersion",
    "Value",
    "ValueKind",
    "VarBind",
    # OIDs
    "parse_oid",
    "format_oid",
    "normalize_oids",
    "error_status_message",
    # Errors
    "SnmpLoopError",
    "OpenFailedError",
    "EncodingError",
    "SendFailedError",
    "RequestError",
    "ValueDecodeError",
    "InvariantError",
]
