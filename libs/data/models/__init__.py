from .base import Base
from .bonus import BonusAccount, BonusEntryKind, BonusHistoryEntry
from .catalog import Category, Product, Subcategory
from .order import Order, OrderItem
from .promo import PromoCode
from .verification import VerificationCheck

__all__ = [
    "Base",
    "BonusAccount",
    "BonusEntryKind",
    "BonusHistoryEntry",
    "Category",
    "Subcategory",
    "Product",
    "Order",
    "OrderItem",
    "PromoCode",
    "VerificationCheck",
]
