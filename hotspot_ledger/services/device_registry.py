"""
Device Registry - Configured hotspot controllers and default selection.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hotspot_ledger.db.models import Device
from hotspot_ledger.exceptions import (
    DeviceNotFoundError,
    DuplicateDeviceError,
    PersistenceError,
    WriteVerificationError,
)
from hotspot_ledger.models.api import DeviceRequest
from hotspot_ledger.models.domain import DeviceData
from hotspot_ledger.observability.logging import get_logger

logger = get_logger(__name__)


def device_to_domain(device: Device) -> DeviceData:
    """Convert ORM device to domain model."""
    return DeviceData(
        device_id=device.id,
        display_name=device.display_name,
        host=device.host,
        port=device.port,
        username=device.username,
        password=device.password,
        is_active=device.is_active,
        created_at=device.created_at,
    )


class DeviceRegistry:
    """
    Registry of hotspot controllers.

    The default device is the first active device in stored order
    (creation time, then id), so selection is deterministic.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_all(self) -> list[DeviceData]:
        stmt = select(Device).order_by(Device.created_at.asc(), Device.id.asc())
        result = await self.session.execute(stmt)
        return [device_to_domain(d) for d in result.scalars().all()]

    async def list_active(self) -> list[DeviceData]:
        stmt = (
            select(Device)
            .where(Device.is_active.is_(True))
            .order_by(Device.created_at.asc(), Device.id.asc())
        )
        result = await self.session.execute(stmt)
        return [device_to_domain(d) for d in result.scalars().all()]

    async def get(self, device_id: UUID) -> DeviceData:
        """
        Raises:
            DeviceNotFoundError: no device with this id
        """
        device = await self.session.get(Device, device_id)
        if device is None:
            raise DeviceNotFoundError(device_id)
        return device_to_domain(device)

    async def select_default(self) -> DeviceData | None:
        """First active device in stored order, or None when none is active."""
        stmt = (
            select(Device)
            .where(Device.is_active.is_(True))
            .order_by(Device.created_at.asc(), Device.id.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        device = result.scalars().first()
        return device_to_domain(device) if device is not None else None

    async def upsert(self, request: DeviceRequest, device_id: UUID | None = None) -> DeviceData:
        """
        Create a device, or update the one with `device_id`.

        Raises:
            DeviceNotFoundError: device_id given but unknown
            DuplicateDeviceError: host already registered to another device
        """
        existing = await self._find_by_host(request.host)
        if existing is not None and existing.id != device_id:
            raise DuplicateDeviceError(request.host)

        if device_id is None:
            device = Device(
                display_name=request.display_name,
                host=request.host,
                port=request.port,
                username=request.username,
                password=request.password,
                is_active=request.is_active,
            )
            self.session.add(device)
        else:
            device = await self.session.get(Device, device_id)
            if device is None:
                raise DeviceNotFoundError(device_id)
            device.display_name = request.display_name
            device.host = request.host
            device.port = request.port
            device.username = request.username
            device.password = request.password
            device.is_active = request.is_active

        try:
            await self.session.flush()
            verified = await self.session.get(Device, device.id)
            if verified is None:
                raise WriteVerificationError(f"Device {device.id} not found after write")
            await self.session.commit()
        except WriteVerificationError:
            await self.session.rollback()
            raise
        except IntegrityError as e:
            await self.session.rollback()
            raise DuplicateDeviceError(request.host) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to save device: {type(e).__name__}") from e

        logger.info(
            "device_saved",
            device_id=str(verified.id),
            host=verified.host,
            is_active=verified.is_active,
            created=device_id is None,
        )
        return device_to_domain(verified)

    async def remove(self, device_id: UUID) -> None:
        """
        Delete a device. Clients already built from it keep working.

        Raises:
            DeviceNotFoundError: no device with this id
        """
        device = await self.session.get(Device, device_id)
        if device is None:
            raise DeviceNotFoundError(device_id)

        try:
            await self.session.delete(device)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to remove device: {type(e).__name__}") from e

        logger.info("device_removed", device_id=str(device_id))

    async def _find_by_host(self, host: str) -> Device | None:
        stmt = select(Device).where(Device.host == host)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
