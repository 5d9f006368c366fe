"""Common constants used across the application."""

from decimal import Decimal

# Loyalty tiers, lowest first: (level, cashback percent, cumulative spend threshold)
LEVEL_BRONZE = "bronze"
LEVEL_SILVER = "silver"
LEVEL_GOLD = "gold"
LEVEL_PLATINUM = "platinum"
LEVEL_PREMIUM = "premium"

LOYALTY_TIERS: tuple[tuple[str, Decimal, int], ...] = (
    (LEVEL_BRONZE, Decimal("2.5"), 0),
    (LEVEL_SILVER, Decimal("5"), 10_000),
    (LEVEL_GOLD, Decimal("7.5"), 20_000),
    (LEVEL_PLATINUM, Decimal("10"), 30_000),
    (LEVEL_PREMIUM, Decimal("15"), 50_000),
)

LEVELS = tuple(level for level, _, _ in LOYALTY_TIERS)

EXPIRED_REASON = "expired"

# Order statuses
ORDER_PENDING = "pending"
ORDER_CONFIRMED = "confirmed"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"
ORDER_STATUSES = (ORDER_PENDING, ORDER_CONFIRMED, ORDER_DELIVERED, ORDER_CANCELLED)

ADMIN_SESSION_COOKIE = "admin_session"
