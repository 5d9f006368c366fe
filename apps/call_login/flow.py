"""Client side of the call-verification login.

States::

    phone-entry -> calling -> awaiting-call -> verified
                                            -> phone-entry   (expired/failed/window elapsed)
                            -> rate-limited  (cooldown)
                            -> phone-entry   (network error, retry allowed at once)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

import httpx

from libs.common import AppSettings

from .client import CheckExpiredError, RateLimitedError

logger = logging.getLogger(__name__)


class LoginState(str, Enum):
    PHONE_ENTRY = "phone-entry"
    CALLING = "calling"
    AWAITING_CALL = "awaiting-call"
    VERIFIED = "verified"
    RATE_LIMITED = "rate-limited"


@dataclass(frozen=True)
class CallLoginTiming:
    poll_interval: float = 3.0
    call_window: float = 300.0
    cooldown: float = 600.0

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "CallLoginTiming":
        return cls(
            poll_interval=settings.verification_poll_interval_seconds,
            call_window=float(settings.verification_window_seconds),
            cooldown=float(settings.verification_cooldown_seconds),
        )


@dataclass
class LoginOutcome:
    state: LoginState
    phone: str | None = None
    check_id: str | None = None
    call_phone: str | None = None
    error: str | None = None
    messages: list[str] = field(default_factory=list)

    @property
    def verified(self) -> bool:
        return self.state is LoginState.VERIFIED


class LoginApi(Protocol):
    async def send_call(self, phone: str) -> dict[str, Any]: ...

    async def call_status(self, check_id: str, phone: str) -> str: ...


_TRANSIENT_ERRORS = (ConnectionError, TimeoutError, httpx.HTTPError)


class CallLoginFlow:
    """Drives one login attempt at a time against ``LoginApi``.

    The local window is enforced independently of the server: a VERIFIED
    answer that arrives after the deadline is ignored.
    """

    def __init__(
        self,
        api: LoginApi,
        timing: CallLoginTiming | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_update: Callable[[LoginOutcome], None] | None = None,
    ) -> None:
        self.api = api
        self.timing = timing or CallLoginTiming()
        self._clock = clock
        self._sleep = sleep
        self._on_update = on_update
        self.state = LoginState.PHONE_ENTRY
        self._cooldown_until: float | None = None

    def cooldown_remaining(self) -> float:
        if self._cooldown_until is None:
            return 0.0
        return max(self._cooldown_until - self._clock(), 0.0)

    async def login(self, phone: str) -> LoginOutcome:
        if self.state is LoginState.RATE_LIMITED:
            remaining = self.cooldown_remaining()
            if remaining > 0:
                return LoginOutcome(
                    LoginState.RATE_LIMITED, phone=phone, error=f"Too many attempts, try again in {int(remaining) + 1}s"
                )
            self._cooldown_until = None
            self.state = LoginState.PHONE_ENTRY

        self.state = LoginState.CALLING
        try:
            call = await self.api.send_call(phone)
        except RateLimitedError:
            self._cooldown_until = self._clock() + self.timing.cooldown
            return self._finish(LoginState.RATE_LIMITED, phone, error="Too many attempts, please wait")
        except _TRANSIENT_ERRORS as exc:
            logger.warning(f"Call request for {phone} failed: {exc}")
            return self._finish(LoginState.PHONE_ENTRY, phone, error=f"Could not request a call: {exc}")

        self.state = LoginState.AWAITING_CALL
        return await self._await_call(phone, call)

    async def _await_call(self, phone: str, call: dict[str, Any]) -> LoginOutcome:
        check_id = call["check_id"]
        outcome = LoginOutcome(
            LoginState.AWAITING_CALL,
            phone=phone,
            check_id=check_id,
            call_phone=call.get("call_phone_pretty") or call.get("call_phone"),
        )
        self._notify(outcome)
        deadline = self._clock() + self.timing.call_window

        while True:
            await self._sleep(self.timing.poll_interval)
            if self._clock() > deadline:
                break
            try:
                status = await self.api.call_status(check_id, phone)
            except CheckExpiredError:
                return self._finish(LoginState.PHONE_ENTRY, outcome=outcome, error="The call window has expired")
            except _TRANSIENT_ERRORS as exc:
                outcome.messages.append(f"Status check failed: {exc}")
                self._notify(outcome)
                continue

            if status == "VERIFIED":
                if self._clock() > deadline:
                    break
                logger.info(f"Phone {phone} verified by check {check_id}")
                return self._finish(LoginState.VERIFIED, outcome=outcome)
            if status == "EXPIRED":
                return self._finish(LoginState.PHONE_ENTRY, outcome=outcome, error="The call window has expired")
            if status == "FAILED":
                return self._finish(LoginState.PHONE_ENTRY, outcome=outcome, error="Verification failed, try again")

        return self._finish(LoginState.PHONE_ENTRY, outcome=outcome, error="No call received in time")

    def _notify(self, outcome: LoginOutcome) -> None:
        if self._on_update is not None:
            # Observers get a copy; the flow keeps mutating its own outcome
            self._on_update(replace(outcome, messages=list(outcome.messages)))

    def _finish(
        self,
        state: LoginState,
        phone: str | None = None,
        *,
        outcome: LoginOutcome | None = None,
        error: str | None = None,
    ) -> LoginOutcome:
        self.state = state
        outcome = outcome or LoginOutcome(state, phone=phone)
        outcome.state = state
        outcome.error = error
        return outcome
