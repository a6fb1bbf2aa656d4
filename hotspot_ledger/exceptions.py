"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from decimal import Decimal
from uuid import UUID


class LedgerError(Exception):
    """Base exception for all hotspot ledger errors."""

    pass


# ============================================================================
# Validation
# ============================================================================


class ValidationError(LedgerError):
    """Raised when caller input is rejected."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Validation failed: {message}")


class InsufficientCreditsError(ValidationError):
    """Raised when trader balance does not cover a purchase."""

    def __init__(self, trader_key: str, balance: Decimal, required: Decimal) -> None:
        self.trader_key = trader_key
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits. Balance: {balance}, Required: {required}")


class DuplicateClientError(ValidationError):
    """Raised when a client phone or MAC already exists for the trader."""

    def __init__(self, trader_key: str, field: str, value: str) -> None:
        self.trader_key = trader_key
        self.field = field
        self.value = value
        super().__init__(f"Client with {field} {value} already exists for trader {trader_key}")


class DuplicateDeviceError(ValidationError):
    """Raised when a device host is already registered."""

    def __init__(self, host: str) -> None:
        self.host = host
        super().__init__(f"Device with host {host} already exists")


class DeviceConfigurationError(ValidationError):
    """Raised when device connection parameters are malformed."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid device configuration: {reason}")


# ============================================================================
# Not found
# ============================================================================


class NotFoundError(LedgerError):
    """Raised when a referenced record does not exist."""

    def __init__(self, resource: str, identifier: str) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class TraderNotFoundError(NotFoundError, ValidationError):
    """Raised when trader doesn't exist. Also a validation failure for appends."""

    def __init__(self, trader_key: str) -> None:
        self.trader_key = trader_key
        self.resource = "Trader"
        self.identifier = trader_key
        self.message = f"Trader not found: {trader_key}"
        LedgerError.__init__(self, self.message)


class DeviceNotFoundError(NotFoundError):
    """Raised when device doesn't exist."""

    def __init__(self, device_id: UUID) -> None:
        self.device_id = device_id
        super().__init__("Device", str(device_id))


class DiscountNotFoundError(NotFoundError):
    """Raised when discount doesn't exist or belongs to another trader."""

    def __init__(self, discount_id: UUID) -> None:
        self.discount_id = discount_id
        super().__init__("Discount", str(discount_id))


class SessionNotFoundError(NotFoundError):
    """Raised when the device has no active session with the given id."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__("Session", session_id)


# ============================================================================
# Device
# ============================================================================


class DeviceError(LedgerError):
    """Base exception for hotspot controller failures."""

    def __init__(self, host: str, message: str) -> None:
        self.host = host
        self.message = message
        super().__init__(f"Device {host}: {message}")


class DeviceUnavailableError(DeviceError):
    """Raised when the device cannot be reached in time."""

    pass


class DeviceProtocolError(DeviceError):
    """Raised when the device answers but the answer is rejected or unusable."""

    def __init__(self, host: str, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(host, message)


# ============================================================================
# Persistence
# ============================================================================


class PersistenceError(LedgerError):
    """Raised when database operation fails unexpectedly."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Database error: {message}")


class WriteVerificationError(PersistenceError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        LedgerError.__init__(self, f"Write verification failed: {message}")
