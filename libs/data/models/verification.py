from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from libs.common.call_check import CheckStatus
from libs.data.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class VerificationCheck(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "auth_logs"

    check_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    phone: Mapped[str] = mapped_column(String(16), index=True)
    status: Mapped[str] = mapped_column(String(16), default=CheckStatus.PENDING.value)
    call_phone: Mapped[str | None] = mapped_column(String(32))
    call_phone_pretty: Mapped[str | None] = mapped_column(String(32))
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
