from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from libs.common.constants import LEVEL_BRONZE
from libs.data.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class BonusEntryKind:
    ORDER_CREDIT = "order_credit"
    ORDER_DEBIT = "order_debit"
    ADJUSTMENT = "adjustment"
    EXPIRY = "expiry"


class BonusAccount(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "bonuses"
    __table_args__ = (CheckConstraint("bonus_balance >= 0", name="ck_bonuses_balance_non_negative"),)

    phone: Mapped[str] = mapped_column(String(16), unique=True, index=True)
    bonus_balance: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    level: Mapped[str] = mapped_column(String(16), default=LEVEL_BRONZE, server_default=LEVEL_BRONZE)
    total_spent: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    history: Mapped[list["BonusHistoryEntry"]] = relationship(
        back_populates="account", order_by="[BonusHistoryEntry.created_at, BonusHistoryEntry.id]"
    )


class BonusHistoryEntry(Base):
    """Append-only ledger row; corrections are offsetting inserts."""

    __tablename__ = "bonus_history"
    __table_args__ = (UniqueConstraint("order_id", "kind", name="uq_bonus_history_order_kind"),)

    # Insertion order breaks created_at ties
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    account_id: Mapped[UUID] = mapped_column(ForeignKey("bonuses.id"), index=True)
    amount: Mapped[int] = mapped_column(Integer)
    reason: Mapped[str] = mapped_column(String(255))
    kind: Mapped[str] = mapped_column(String(32))
    order_id: Mapped[int | None] = mapped_column(ForeignKey("orders.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True
    )

    account: Mapped["BonusAccount"] = relationship(back_populates="history")
