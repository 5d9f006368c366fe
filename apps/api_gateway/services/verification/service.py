from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from libs.common import AppSettings, get_settings
from libs.common.call_check import (
    CallCheckError,
    CallVerificationProvider,
    CheckStatus,
    map_provider_status,
)
from libs.common.phone import PhoneFormatError, require_mobile_phone
from libs.common.rate_limit import RateLimiter
from libs.data.models import VerificationCheck
from libs.data.models.base import as_utc, utcnow
from libs.data.repositories import VerificationRepository

from ...exceptions import (
    RateLimited,
    UpstreamFailure,
    ValidationError,
    VerificationExpired,
    VerificationNotFound,
)

logger = logging.getLogger(__name__)


class CallVerificationService:
    """
    Phone ownership check by inbound call.

    The server-side window (``expires_at``) wins over anything the provider
    says: once it has elapsed a check can only end up EXPIRED.
    """

    def __init__(
        self,
        session: AsyncSession,
        provider: CallVerificationProvider,
        limiter: RateLimiter,
        settings: AppSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session = session
        self.provider = provider
        self.limiter = limiter
        self.settings = settings or get_settings()
        self.repo = VerificationRepository(session)
        self._clock = clock

    async def request_call(self, phone: str) -> VerificationCheck:
        try:
            phone = require_mobile_phone(phone)
        except PhoneFormatError as exc:
            raise ValidationError(str(exc)) from exc

        if not await self.limiter.check(phone):
            raise RateLimited(await self.limiter.retry_after(phone))

        try:
            call = await self.provider.add(phone)
        except CallCheckError as exc:
            logger.error(f"Call provider rejected request for {phone}: {exc}")
            # A request that never reached a caller does not count against the quota
            await self.limiter.refund(phone)
            raise UpstreamFailure("Call verification provider is unavailable") from exc

        issued_at = self._clock()
        check = await self.repo.create(
            check_id=call.check_id,
            phone=phone,
            call_phone=call.call_phone,
            call_phone_pretty=call.call_phone_pretty,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=self.settings.verification_window_seconds),
        )
        logger.info(f"Call check {call.check_id} issued for {phone}")
        return check

    async def poll_status(self, check_id: str, phone: str) -> CheckStatus:
        """
        Current status of ``check_id``, asking the provider while it is pending.

        Raises VerificationExpired once the window has elapsed.
        """
        try:
            phone = require_mobile_phone(phone)
        except PhoneFormatError as exc:
            raise ValidationError(str(exc)) from exc

        check = await self.repo.get_by_check_id(check_id)
        if check is None or check.phone != phone:
            raise VerificationNotFound(check_id)

        current = CheckStatus(check.status)
        if current is CheckStatus.EXPIRED:
            raise VerificationExpired(check_id)
        if self._window_closed(check):
            await self._expire(check, current)
            raise VerificationExpired(check_id)
        if current.is_terminal:
            return current

        try:
            status = await self.provider.status(check_id)
        except CallCheckError as exc:
            logger.warning(f"Status lookup for {check_id} failed: {exc}")
            raise UpstreamFailure("Call verification provider is unavailable") from exc

        # The provider round-trip may have outlived the window
        if self._window_closed(check):
            await self._expire(check, current)
            raise VerificationExpired(check_id)

        if status is not current:
            await self.repo.set_status(check, status)
            logger.info(f"Call check {check_id} for {phone} is now {status.value}")
        if status is CheckStatus.EXPIRED:
            raise VerificationExpired(check_id)
        return status

    async def handle_webhook(self, check_id: str, check_status: Any) -> CheckStatus:
        """
        Provider callback; only a still-open pending check can change.

        A reported VERIFIED is stored only after the provider confirms it for
        the same check, so the callback alone never opens a session.
        """
        check = await self.repo.get_by_check_id(check_id)
        if check is None:
            raise VerificationNotFound(check_id)

        current = CheckStatus(check.status)
        if current.is_terminal:
            return current
        if self._window_closed(check):
            await self._expire(check, current)
            return CheckStatus.EXPIRED

        status = map_provider_status(check_status)
        if status is CheckStatus.VERIFIED:
            try:
                confirmed = await self.provider.status(check_id)
            except CallCheckError as exc:
                logger.warning(f"Could not confirm webhook for {check_id}: {exc}")
                raise UpstreamFailure("Call verification provider is unavailable") from exc
            if confirmed is not CheckStatus.VERIFIED:
                logger.warning(f"Webhook claimed {check_id} verified but provider reports {confirmed.value}")
                return current

        if status is not current:
            await self.repo.set_status(check, status)
            logger.info(f"Webhook moved call check {check_id} to {status.value}")
        return status

    def _window_closed(self, check: VerificationCheck) -> bool:
        return self._clock() > as_utc(check.expires_at)

    async def _expire(self, check: VerificationCheck, current: CheckStatus) -> None:
        # A check verified in time stays VERIFIED in history
        if current is CheckStatus.PENDING:
            await self.repo.set_status(check, CheckStatus.EXPIRED)
            logger.info(f"Call check {check.check_id} expired")
