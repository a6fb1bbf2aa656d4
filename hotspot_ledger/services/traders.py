"""
Trader Service - Trader administration and the local client replica.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

import re

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hotspot_ledger.db.models import Client, Trader
from hotspot_ledger.exceptions import (
    DuplicateClientError,
    PersistenceError,
    ValidationError,
    WriteVerificationError,
)
from hotspot_ledger.models.domain import ClientData, TraderData
from hotspot_ledger.observability.logging import get_logger
from hotspot_ledger.services.device_client import normalize_mac
from hotspot_ledger.services.ledger import require_trader

logger = get_logger(__name__)

TRADER_KEY_PATTERN = re.compile(r"^\+?\d{6,15}$")


def trader_to_domain(trader: Trader) -> TraderData:
    """Convert ORM trader to domain model."""
    return TraderData(
        trader_key=trader.trader_key,
        display_name=trader.display_name,
        is_active=trader.is_active,
        created_at=trader.created_at,
        updated_at=trader.updated_at,
    )


def client_to_domain(client: Client) -> ClientData:
    """Convert ORM client to domain model."""
    return ClientData(
        client_id=client.id,
        trader_key=client.trader_key,
        phone=client.phone,
        mac_address=client.mac_address,
        rewarded=client.rewarded,
        created_at=client.created_at,
    )


class TraderService:
    """Trader and client administration."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ========================================================================
    # Traders
    # ========================================================================

    async def create_trader(self, trader_key: str, display_name: str) -> TraderData:
        """
        Register a trader. Traders start with no transactions (balance 0).

        Raises:
            ValidationError: key not phone-shaped, empty name, or key taken
        """
        if not TRADER_KEY_PATTERN.match(trader_key):
            raise ValidationError(f"Trader key must be a phone number, got {trader_key!r}")
        display_name = display_name.strip()
        if not display_name:
            raise ValidationError("Display name cannot be empty")

        if await self._find_trader(trader_key) is not None:
            raise ValidationError(f"Trader {trader_key} already exists")

        trader = Trader(trader_key=trader_key, display_name=display_name, is_active=True)
        self.session.add(trader)

        try:
            await self.session.flush()
            verified = await self.session.get(Trader, trader.id)
            if verified is None:
                raise WriteVerificationError(f"Trader {trader_key} not found after insert")
            await self.session.commit()
        except WriteVerificationError:
            await self.session.rollback()
            raise
        except IntegrityError as e:
            await self.session.rollback()
            raise ValidationError(f"Trader {trader_key} already exists") from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to create trader: {type(e).__name__}") from e

        logger.info("trader_created", trader_key=trader_key)
        return trader_to_domain(verified)

    async def get_trader(self, trader_key: str) -> TraderData:
        """
        Raises:
            TraderNotFoundError: no trader with this key
        """
        return trader_to_domain(await require_trader(self.session, trader_key))

    async def list_traders(self, include_inactive: bool = False) -> list[TraderData]:
        stmt = select(Trader).order_by(Trader.created_at.asc(), Trader.trader_key.asc())
        if not include_inactive:
            stmt = stmt.where(Trader.is_active.is_(True))
        result = await self.session.execute(stmt)
        return [trader_to_domain(t) for t in result.scalars().all()]

    async def update_trader(
        self,
        trader_key: str,
        display_name: str | None = None,
        is_active: bool | None = None,
    ) -> TraderData:
        """
        Update only the fields that are not None.

        Raises:
            TraderNotFoundError: no trader with this key
            ValidationError: empty display name
        """
        trader = await require_trader(self.session, trader_key)

        if display_name is not None:
            display_name = display_name.strip()
            if not display_name:
                raise ValidationError("Display name cannot be empty")
            trader.display_name = display_name
        if is_active is not None:
            trader.is_active = is_active

        try:
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to update trader: {type(e).__name__}") from e

        logger.info(
            "trader_updated",
            trader_key=trader_key,
            display_name_changed=display_name is not None,
            is_active=trader.is_active,
        )
        return trader_to_domain(trader)

    async def deactivate_trader(self, trader_key: str) -> TraderData:
        """Soft-delete. The ledger and clients are kept."""
        return await self.update_trader(trader_key, is_active=False)

    # ========================================================================
    # Clients
    # ========================================================================

    async def create_client(
        self,
        trader_key: str,
        phone: str,
        mac_address: str,
        rewarded: bool = False,
    ) -> ClientData:
        """
        Add a subscriber to the trader's local replica.

        Raises:
            TraderNotFoundError: no trader with this key
            ValidationError: empty phone or malformed MAC
            DuplicateClientError: phone or MAC already used by this trader
        """
        phone = phone.strip()
        if not phone:
            raise ValidationError("Client phone cannot be empty")
        mac = normalize_mac(mac_address)
        if mac is None:
            raise ValidationError(f"Invalid MAC address: {mac_address!r}")

        await require_trader(self.session, trader_key)

        duplicate = await self._find_duplicate_client(trader_key, phone, mac)
        if duplicate is not None:
            field, value = ("phone", phone) if duplicate.phone == phone else ("mac_address", mac)
            raise DuplicateClientError(trader_key, field, value)

        client = Client(trader_key=trader_key, phone=phone, mac_address=mac, rewarded=rewarded)
        self.session.add(client)

        try:
            await self.session.flush()
            verified = await self.session.get(Client, client.id)
            if verified is None:
                raise WriteVerificationError(f"Client {client.id} not found after insert")
            await self.session.commit()
        except WriteVerificationError:
            await self.session.rollback()
            raise
        except IntegrityError as e:
            # Lost a race with a concurrent insert of the same phone or MAC
            await self.session.rollback()
            raise DuplicateClientError(trader_key, "phone_or_mac_address", f"{phone}/{mac}") from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to create client: {type(e).__name__}") from e

        logger.info("client_created", trader_key=trader_key, client_id=str(verified.id))
        return client_to_domain(verified)

    async def list_clients(self, trader_key: str) -> list[ClientData]:
        """
        Newest first.

        Raises:
            TraderNotFoundError: no trader with this key
        """
        await require_trader(self.session, trader_key)
        return await load_clients(self.session, trader_key)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_trader(self, trader_key: str) -> Trader | None:
        stmt = select(Trader).where(Trader.trader_key == trader_key)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_duplicate_client(
        self, trader_key: str, phone: str, mac: str
    ) -> Client | None:
        stmt = select(Client).where(
            Client.trader_key == trader_key,
            (Client.phone == phone) | (Client.mac_address == mac),
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()


async def load_clients(session: AsyncSession, trader_key: str) -> list[ClientData]:
    """Clients of a trader, newest first."""
    stmt = (
        select(Client)
        .where(Client.trader_key == trader_key)
        .order_by(Client.created_at.desc(), Client.id.asc())
    )
    result = await session.execute(stmt)
    return [client_to_domain(c) for c in result.scalars().all()]
