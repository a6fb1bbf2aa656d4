"""
Reconciliation Service - Merge live device sessions into the local client list.

Each request runs START -> DEVICE_QUERY -> MERGE | FALLBACK -> DONE once, with
no retries. Device failures never escape `reconcile_clients`; they produce a
local result tagged with the failure class.
"""

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from hotspot_ledger.config import settings
from hotspot_ledger.exceptions import (
    DeviceConfigurationError,
    DeviceProtocolError,
    DeviceUnavailableError,
    SessionNotFoundError,
)
from hotspot_ledger.models.api import FallbackReason, ReconciliationSource
from hotspot_ledger.models.domain import (
    ClientData,
    LiveSessions,
    Reconciled,
    ReconciledClient,
    ReconciledUser,
    ReconciledUsers,
    SessionData,
    VoucherUserData,
)
from hotspot_ledger.observability.logging import get_logger
from hotspot_ledger.observability.metrics import metrics
from hotspot_ledger.observability.tracing import trace_operation
from hotspot_ledger.services.device_client import (
    DeviceClientFactory,
    build_device_client,
    normalize_mac,
)
from hotspot_ledger.services.device_registry import DeviceRegistry
from hotspot_ledger.services.ledger import require_trader
from hotspot_ledger.services.traders import load_clients
from hotspot_ledger.services.vouchers import load_voucher_users

logger = get_logger(__name__)

FALLBACK_WARNINGS = {
    FallbackReason.NO_ACTIVE_DEVICE: "No active hotspot device configured; showing local data",
    FallbackReason.DEVICE_MISCONFIGURED: "Hotspot device is misconfigured; showing local data",
    FallbackReason.DEVICE_UNAVAILABLE: "Hotspot device unavailable; showing local data",
    FallbackReason.DEVICE_PROTOCOL_ERROR: (
        "Hotspot device returned an unusable response; showing local data"
    ),
}


@dataclass(frozen=True)
class DeviceQuery:
    """Outcome of one device query: sessions, or the reason there are none."""

    sessions: tuple[SessionData, ...] | None
    fallback_reason: FallbackReason | None = None


def sessions_for_trader(
    trader_key: str, sessions: Iterable[SessionData]
) -> list[SessionData]:
    """Sessions whose hotspot server tag is the trader's key."""
    return [s for s in sessions if s.server_tag == trader_key]


def merge_sessions(
    trader_key: str,
    clients: Sequence[ClientData],
    sessions: Iterable[SessionData],
) -> tuple[ReconciledClient, ...]:
    """
    Match each client to at most one of the trader's sessions by MAC.

    When several sessions carry the same MAC the first one wins.
    """
    by_mac: dict[str, SessionData] = {}
    for session in sessions_for_trader(trader_key, sessions):
        mac = normalize_mac(session.mac_address)
        if mac is not None and mac not in by_mac:
            by_mac[mac] = session

    merged = []
    for client in clients:
        mac = normalize_mac(client.mac_address)
        match = by_mac.get(mac) if mac is not None else None
        merged.append(ReconciledClient(client=client, is_active=match is not None, session_data=match))
    return tuple(merged)


def merge_user_sessions(
    trader_key: str,
    users: Sequence[VoucherUserData],
    sessions: Iterable[SessionData],
) -> tuple[ReconciledUser, ...]:
    """Match each voucher user to the trader's session logged in under its username."""
    by_name: dict[str, SessionData] = {}
    for session in sessions_for_trader(trader_key, sessions):
        if session.username and session.username not in by_name:
            by_name[session.username] = session

    return tuple(
        ReconciledUser(
            user=user,
            is_active=user.username in by_name,
            session_data=by_name.get(user.username),
        )
        for user in users
    )


def local_only(
    clients: Sequence[ClientData], reason: FallbackReason
) -> Reconciled:
    """Fallback result: every client inactive, tagged with the failure class."""
    return Reconciled(
        source=ReconciliationSource.LOCAL,
        clients=tuple(
            ReconciledClient(client=c, is_active=False, session_data=None) for c in clients
        ),
        warning=FALLBACK_WARNINGS[reason],
        fallback_reason=reason,
    )


class ReconciliationService:
    """
    Live-state reconciliation against the registry's default device.

    The device client is built per request from a snapshot of the device
    record and closed before the request returns.
    """

    def __init__(
        self,
        session: AsyncSession,
        client_factory: DeviceClientFactory | None = None,
        deadline: float | None = None,
    ) -> None:
        self.session = session
        self.client_factory = client_factory or build_device_client
        self.deadline = deadline if deadline is not None else settings.device_request_deadline
        self.registry = DeviceRegistry(session)

    async def reconcile_clients(self, trader_key: str) -> Reconciled:
        """
        Local clients of the trader with live session state.

        Raises:
            TraderNotFoundError: no trader with this key
        """
        await require_trader(self.session, trader_key)
        clients = await load_clients(self.session, trader_key)

        query = await self._query_device(trader_key)
        if query.sessions is None:
            reason = query.fallback_reason or FallbackReason.DEVICE_UNAVAILABLE
            result = local_only(clients, reason)
        else:
            result = Reconciled(
                source=ReconciliationSource.DEVICE,
                clients=merge_sessions(trader_key, clients, query.sessions),
            )

        metrics.record_reconciliation(
            result.source.value,
            result.fallback_reason.value if result.fallback_reason else None,
        )
        logger.info(
            "clients_reconciled",
            trader_key=trader_key,
            source=result.source.value,
            total_clients=result.total_clients,
            active_sessions=result.active_sessions,
        )
        return result

    async def reconcile_users(self, trader_key: str) -> ReconciledUsers:
        """
        Voucher users of the trader with live session state.

        Falls back to local data exactly like reconcile_clients.

        Raises:
            TraderNotFoundError: no trader with this key
        """
        await require_trader(self.session, trader_key)
        users = await load_voucher_users(self.session, trader_key)

        query = await self._query_device(trader_key)
        if query.sessions is None:
            reason = query.fallback_reason or FallbackReason.DEVICE_UNAVAILABLE
            result = ReconciledUsers(
                source=ReconciliationSource.LOCAL,
                users=tuple(
                    ReconciledUser(user=u, is_active=False, session_data=None) for u in users
                ),
                warning=FALLBACK_WARNINGS[reason],
                fallback_reason=reason,
            )
        else:
            result = ReconciledUsers(
                source=ReconciliationSource.DEVICE,
                users=merge_user_sessions(trader_key, users, query.sessions),
            )

        metrics.record_reconciliation(
            result.source.value,
            result.fallback_reason.value if result.fallback_reason else None,
        )
        logger.info(
            "users_reconciled",
            trader_key=trader_key,
            source=result.source.value,
            total_users=result.total_users,
            active_sessions=result.active_sessions,
        )
        return result

    async def list_trader_sessions(self, trader_key: str) -> LiveSessions:
        """
        Live sessions served for the trader, with provenance.

        Raises:
            TraderNotFoundError: no trader with this key
        """
        await require_trader(self.session, trader_key)

        query = await self._query_device(trader_key)
        if query.sessions is None:
            reason = query.fallback_reason or FallbackReason.DEVICE_UNAVAILABLE
            return LiveSessions(
                source=ReconciliationSource.LOCAL,
                sessions=(),
                warning=FALLBACK_WARNINGS[reason],
                fallback_reason=reason,
            )
        return LiveSessions(
            source=ReconciliationSource.DEVICE,
            sessions=tuple(sessions_for_trader(trader_key, query.sessions)),
        )

    async def disconnect_trader_session(self, trader_key: str, session_id: str) -> None:
        """
        Drop one of the trader's live sessions on the default device.

        Device failures surface here; there is no local answer to fall back to.

        Raises:
            TraderNotFoundError: no trader with this key
            SessionNotFoundError: the trader has no session with this id
            DeviceUnavailableError: no active device, or it cannot be reached
            DeviceProtocolError: the device answer was unusable
        """
        await require_trader(self.session, trader_key)

        device = await self.registry.select_default()
        if device is None:
            raise DeviceUnavailableError("-", "no active device configured")

        client = self.client_factory(device.to_config())
        try:
            with trace_operation("device_disconnect_session", host=device.host):
                sessions = await asyncio.wait_for(
                    client.list_active_sessions(), timeout=self.deadline
                )
                owned = any(
                    s.session_id == session_id
                    for s in sessions_for_trader(trader_key, sessions)
                )
                if not owned:
                    raise SessionNotFoundError(session_id)
                await asyncio.wait_for(client.disconnect_session(session_id), timeout=self.deadline)
        except TimeoutError as e:
            raise DeviceUnavailableError(device.host, "deadline exceeded") from e
        finally:
            await client.aclose()

        logger.info("session_disconnected", trader_key=trader_key, session_id=session_id)

    async def _query_device(self, trader_key: str) -> DeviceQuery:
        device = await self.registry.select_default()
        if device is None:
            return self._fallback(trader_key, FallbackReason.NO_ACTIVE_DEVICE)

        try:
            client = self.client_factory(device.to_config())
        except DeviceConfigurationError:
            return self._fallback(trader_key, FallbackReason.DEVICE_MISCONFIGURED)

        try:
            with trace_operation(
                "device_list_active_sessions", host=device.host, trader_key=trader_key
            ) as span:
                sessions = await asyncio.wait_for(
                    client.list_active_sessions(), timeout=self.deadline
                )
                span.set_attribute("session_count", len(sessions))
        except TimeoutError:
            return self._fallback(trader_key, FallbackReason.DEVICE_UNAVAILABLE)
        except DeviceUnavailableError:
            return self._fallback(trader_key, FallbackReason.DEVICE_UNAVAILABLE)
        except DeviceProtocolError:
            return self._fallback(trader_key, FallbackReason.DEVICE_PROTOCOL_ERROR)
        finally:
            await client.aclose()

        return DeviceQuery(sessions=tuple(sessions))

    def _fallback(self, trader_key: str, reason: FallbackReason) -> DeviceQuery:
        logger.warning("reconciliation_fallback", trader_key=trader_key, reason=reason.value)
        return DeviceQuery(sessions=None, fallback_reason=reason)
