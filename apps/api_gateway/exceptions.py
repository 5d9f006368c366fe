"""Domain errors raised by the API services."""

from __future__ import annotations


class StorefrontError(Exception):
    """Base class for errors mapped to HTTP responses."""


class ValidationError(StorefrontError):
    """Malformed input rejected before any state is touched."""


class SessionRequired(StorefrontError):
    """No valid customer session cookie."""


class AdminRequired(StorefrontError):
    """Missing or invalid admin credentials."""


class RateLimited(StorefrontError):
    """Too many verification attempts for one phone."""

    def __init__(self, retry_after: int) -> None:
        super().__init__(f"Too many verification attempts, retry in {retry_after}s")
        self.retry_after = retry_after


class VerificationNotFound(StorefrontError):
    def __init__(self, check_id: str) -> None:
        super().__init__(f"Verification check {check_id} not found")
        self.check_id = check_id


class VerificationExpired(StorefrontError):
    def __init__(self, check_id: str) -> None:
        super().__init__(f"Verification check {check_id} has expired")
        self.check_id = check_id


class BonusAccountNotFound(StorefrontError):
    def __init__(self, phone: str) -> None:
        super().__init__(f"No bonus account for {phone}")
        self.phone = phone


class InsufficientBalance(StorefrontError):
    def __init__(self, phone: str, requested: int, available: int) -> None:
        super().__init__(f"Requested {requested} bonuses but only {available} available")
        self.phone = phone
        self.requested = requested
        self.available = available


class BonusAlreadyCredited(StorefrontError):
    def __init__(self, order_id: int) -> None:
        super().__init__(f"Order {order_id} has already been credited")
        self.order_id = order_id


class NotFound(StorefrontError):
    """Generic missing resource (order, promo code, category)."""


class UpstreamFailure(StorefrontError):
    """The call provider or the database failed."""


class BonusCreditFailed(UpstreamFailure):
    """
    The order row was saved but crediting its bonus failed.

    The order is deliberately not rolled back; ``order_id`` is reported so an
    operator can credit it manually.
    """

    def __init__(self, order_id: int, reason: str) -> None:
        super().__init__(f"Order {order_id} saved but bonus credit failed: {reason}")
        self.order_id = order_id
