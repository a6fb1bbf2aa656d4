"""
Device Client - Hotspot controller interface and RouterOS REST implementation.

NO DICTIONARIES - Raw device records are parsed into typed domain models at
the boundary; malformed records never leave this module.
"""

import math
import re
import time
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

import httpx

from hotspot_ledger.config import settings
from hotspot_ledger.exceptions import (
    DeviceConfigurationError,
    DeviceError,
    DeviceProtocolError,
    DeviceUnavailableError,
    SessionNotFoundError,
)
from hotspot_ledger.models.domain import (
    DeviceConfig,
    HotspotUserData,
    InterfaceData,
    SessionData,
)
from hotspot_ledger.observability.logging import get_logger
from hotspot_ledger.observability.metrics import metrics

logger = get_logger(__name__)

_MAC_SEPARATORS = re.compile(r"[:\-.\s]")
_MAC_HEX = re.compile(r"^[0-9A-F]{12}$")
_DURATION = re.compile(r"^(?:\d+[wdhms])+$")
_DURATION_PART = re.compile(r"(\d+)([wdhms])")
_CLOCK = re.compile(r"^(\d+):([0-5]\d):([0-5]\d)$")
_HOST = re.compile(r"^[A-Za-z0-9.\-:\[\]]+$")

_UNIT_SECONDS = {"w": 604800, "d": 86400, "h": 3600, "m": 60, "s": 1}


def normalize_mac(value: object) -> str | None:
    """
    Canonical AA:BB:CC:DD:EE:FF form, or None when the value is not a MAC.

    Accepts colon, dash, dot or no separators in any case.
    """
    if not isinstance(value, str):
        return None
    hex_digits = _MAC_SEPARATORS.sub("", value).upper()
    if not _MAC_HEX.match(hex_digits):
        return None
    return ":".join(hex_digits[i : i + 2] for i in range(0, 12, 2))


def parse_routeros_duration(value: str) -> int:
    """
    Seconds in a RouterOS duration such as "1w2d3h4m5s" or "01:02:03".

    A bare number counts as seconds; an empty string is zero.

    Raises:
        ValueError: value is not a duration
    """
    text = value.strip()
    if not text:
        return 0
    if text.isdigit():
        return int(text)
    clock = _CLOCK.match(text)
    if clock:
        hours, minutes, seconds = (int(part) for part in clock.groups())
        return hours * 3600 + minutes * 60 + seconds
    if not _DURATION.match(text):
        raise ValueError(f"Not a RouterOS duration: {value!r}")
    return sum(int(n) * _UNIT_SECONDS[unit] for n, unit in _DURATION_PART.findall(text))


def _flag(value: object) -> bool:
    return value is True or value == "true"


def _counter(value: object) -> int:
    """Parse a byte counter. Raises ValueError/TypeError when unusable."""
    if isinstance(value, bool):
        raise ValueError("boolean is not a counter")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError("non-finite counter")
    count = int(value)  # type: ignore[call-overload]
    if count < 0:
        raise ValueError("negative counter")
    return count


def parse_session(record: object) -> SessionData | None:
    """Parse one /ip/hotspot/active record; None if it lacks a MAC or counters."""
    if not isinstance(record, dict):
        return None
    mac = normalize_mac(record.get("mac-address"))
    if mac is None:
        return None
    try:
        bytes_in = _counter(record.get("bytes-in"))
        bytes_out = _counter(record.get("bytes-out"))
    except (TypeError, ValueError):
        return None

    uptime = str(record.get("uptime") or "")
    try:
        uptime_seconds = parse_routeros_duration(uptime)
    except ValueError:
        uptime_seconds = 0

    return SessionData(
        session_id=str(record.get(".id") or ""),
        mac_address=mac,
        username=str(record.get("user") or ""),
        address=str(record.get("address") or ""),
        uptime=uptime,
        uptime_seconds=uptime_seconds,
        bytes_in=bytes_in,
        bytes_out=bytes_out,
        server_tag=str(record.get("server") or ""),
    )


def parse_user(record: object) -> HotspotUserData | None:
    """Parse one /ip/hotspot/user record; None if it has no name."""
    if not isinstance(record, dict) or not record.get("name"):
        return None

    def counter_or_zero(key: str) -> int:
        try:
            return _counter(record.get(key, 0))
        except (TypeError, ValueError):
            return 0

    return HotspotUserData(
        user_id=str(record.get(".id") or ""),
        name=str(record["name"]),
        profile=str(record.get("profile") or "default"),
        mac_address=normalize_mac(record.get("mac-address")),
        limit_uptime=str(record.get("limit-uptime") or "0"),
        uptime=str(record.get("uptime") or ""),
        bytes_in=counter_or_zero("bytes-in"),
        bytes_out=counter_or_zero("bytes-out"),
        disabled=_flag(record.get("disabled")),
        comment=str(record.get("comment") or ""),
    )


def is_available_interface(record: object) -> bool:
    """Ethernet port that is not a bridge slave, not running and not disabled."""
    if not isinstance(record, dict):
        return False
    kind = str(record.get("type") or "").lower()
    return (
        "ether" in kind
        and not _flag(record.get("slave"))
        and not _flag(record.get("running"))
        and not _flag(record.get("disabled"))
    )


def parse_interface(record: dict[str, Any]) -> InterfaceData:
    return InterfaceData(
        interface_id=str(record.get(".id") or ""),
        name=str(record.get("name") or ""),
        type=str(record.get("type") or ""),
        mac_address=str(record.get("mac-address") or ""),
        default_name=str(record.get("default-name") or ""),
        comment=str(record.get("comment") or ""),
    )


@runtime_checkable
class DeviceClient(Protocol):
    """
    Hotspot controller protocol.

    One implementation per controller family. Every call is bounded by the
    client's timeouts and fails with DeviceUnavailableError (unreachable,
    timed out) or DeviceProtocolError (reachable, answer unusable).
    """

    async def test_connection(self) -> bool:
        """True when the device answers; False on any device failure."""
        ...

    async def list_active_sessions(self) -> list[SessionData]:
        """Live sessions. Malformed records are skipped."""
        ...

    async def list_users(self) -> list[HotspotUserData]:
        """Configured hotspot users."""
        ...

    async def disconnect_session(self, session_id: str) -> None:
        """
        Drop a live session.

        Raises:
            SessionNotFoundError: no session with this id
        """
        ...

    async def list_available_interfaces(self) -> list[InterfaceData]:
        """Free ethernet ports."""
        ...

    async def create_user(
        self,
        name: str,
        limit_uptime_seconds: int,
        server: str,
        comment: str,
        password: str = "",
        profile: str = "default",
    ) -> str:
        """Create a hotspot user and return its device id."""
        ...

    async def aclose(self) -> None:
        """Release the underlying connection pool."""
        ...


class RouterOSRestClient:
    """
    MikroTik RouterOS v7 REST API client.

    Holds its own copy of the connection parameters; edits to the stored
    device record never reach an existing client.
    """

    def __init__(
        self,
        config: DeviceConfig,
        connect_timeout: float = 3.0,
        read_timeout: float = 5.0,
        use_tls: bool = False,
        verify_tls: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Raises:
            DeviceConfigurationError: host or port is malformed
        """
        if not config.host or not _HOST.match(config.host):
            raise DeviceConfigurationError(f"invalid host {config.host!r}")
        if not 0 < config.port < 65536:
            raise DeviceConfigurationError(f"invalid port {config.port}")
        if not config.username:
            raise DeviceConfigurationError("username is required")

        self.config = config
        host = f"[{config.host}]" if ":" in config.host and "[" not in config.host else config.host
        scheme = "https" if use_tls else "http"
        self._client = httpx.AsyncClient(
            base_url=f"{scheme}://{host}:{config.port}/rest",
            auth=(config.username, config.password),
            timeout=httpx.Timeout(read_timeout, connect=connect_timeout),
            verify=verify_tls,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ========================================================================
    # Operations
    # ========================================================================

    async def test_connection(self) -> bool:
        try:
            identity = await self._get_json("test_connection", "/system/identity")
        except DeviceError:
            return False
        return isinstance(identity, dict)

    async def list_active_sessions(self) -> list[SessionData]:
        records = await self._get_list("list_active_sessions", "/ip/hotspot/active")
        sessions = [s for s in (parse_session(r) for r in records) if s is not None]
        skipped = len(records) - len(sessions)
        if skipped:
            logger.warning(
                "device_session_records_skipped", host=self.config.host, skipped=skipped
            )
        return sessions

    async def list_users(self) -> list[HotspotUserData]:
        records = await self._get_list("list_users", "/ip/hotspot/user")
        return [u for u in (parse_user(r) for r in records) if u is not None]

    async def list_available_interfaces(self) -> list[InterfaceData]:
        records = await self._get_list("list_interfaces", "/interface")
        return [parse_interface(r) for r in records if is_available_interface(r)]

    async def disconnect_session(self, session_id: str) -> None:
        if not session_id:
            raise SessionNotFoundError(session_id)
        response = await self._send(
            "disconnect_session",
            "DELETE",
            f"/ip/hotspot/active/{quote(session_id, safe='*')}",
            allow_not_found=True,
        )
        if response.status_code == 404:
            raise SessionNotFoundError(session_id)

    async def create_user(
        self,
        name: str,
        limit_uptime_seconds: int,
        server: str,
        comment: str,
        password: str = "",
        profile: str = "default",
    ) -> str:
        body = {
            "name": name,
            "password": password,
            "profile": profile,
            "limit-uptime": str(limit_uptime_seconds),
            "server": server,
            "comment": comment,
            "disabled": "false",
        }
        response = await self._send("create_user", "PUT", "/ip/hotspot/user", json=body)
        created = self._decode("create_user", response)
        if not isinstance(created, dict) or not created.get(".id"):
            raise self._protocol_error("create_user", "missing id in create response")
        return str(created[".id"])

    # ========================================================================
    # Transport
    # ========================================================================

    async def _get_list(self, operation: str, path: str) -> list[Any]:
        payload = await self._get_json(operation, path)
        if not isinstance(payload, list):
            raise self._protocol_error(operation, "expected a list")
        return payload

    async def _get_json(self, operation: str, path: str) -> Any:
        response = await self._send(operation, "GET", path)
        return self._decode(operation, response)

    def _decode(self, operation: str, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise self._protocol_error(operation, "malformed JSON") from e

    async def _send(
        self,
        operation: str,
        method: str,
        path: str,
        json: dict[str, str] | None = None,
        allow_not_found: bool = False,
    ) -> httpx.Response:
        start = time.perf_counter()
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            self._record(operation, "unavailable", start)
            raise self._unavailable(operation, "timed out") from e
        except httpx.TransportError as e:
            self._record(operation, "unavailable", start)
            raise self._unavailable(operation, "connection failed") from e

        status = response.status_code
        if status == 404 and allow_not_found:
            self._record(operation, "not_found", start)
            return response
        if status in (401, 403):
            self._record(operation, "protocol_error", start)
            raise self._protocol_error(operation, "authentication rejected", status)
        if status >= 400:
            self._record(operation, "protocol_error", start)
            raise self._protocol_error(operation, f"unexpected status {status}", status)

        self._record(operation, "success", start)
        return response

    def _record(self, operation: str, outcome: str, start: float) -> None:
        metrics.record_device_request(operation, outcome, time.perf_counter() - start)

    def _unavailable(self, operation: str, reason: str) -> DeviceUnavailableError:
        logger.warning(
            "device_unavailable", host=self.config.host, operation=operation, reason=reason
        )
        return DeviceUnavailableError(self.config.host, reason)

    def _protocol_error(
        self, operation: str, reason: str, status_code: int | None = None
    ) -> DeviceProtocolError:
        logger.warning(
            "device_protocol_error",
            host=self.config.host,
            operation=operation,
            reason=reason,
            status_code=status_code,
        )
        return DeviceProtocolError(self.config.host, reason, status_code)


DeviceClientFactory = Callable[[DeviceConfig], DeviceClient]


def build_device_client(config: DeviceConfig) -> DeviceClient:
    """Construct the RouterOS client for a device using configured timeouts."""
    return RouterOSRestClient(
        config,
        connect_timeout=settings.device_connect_timeout,
        read_timeout=settings.device_read_timeout,
        use_tls=settings.device_use_tls,
        verify_tls=settings.device_verify_tls,
    )
