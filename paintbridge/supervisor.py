"""Serial link health supervision and reconnection policy."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum

import msgspec
import tenacity
from transitions import Machine

from .const import (
    DEFAULT_RECONNECT_BASE_DELAY,
    DEFAULT_RECONNECT_MAX_ATTEMPTS,
    DEFAULT_RECONNECT_MAX_DELAY,
)
from .transport.serial import LinkFailure

logger = logging.getLogger("paintbridge.supervisor")

MANUAL_RESTART_MESSAGE = "USB connection lost. Please check the connection and restart the application."


class ReconnectMode(StrEnum):
    BACKOFF = "backoff"
    MANUAL = "manual"


class BackoffPolicy(msgspec.Struct, frozen=True):
    """Exponential delay schedule: base, 2*base, 4*base ... capped at max_delay."""

    base_delay: float = DEFAULT_RECONNECT_BASE_DELAY
    max_delay: float = DEFAULT_RECONNECT_MAX_DELAY
    max_attempts: int = DEFAULT_RECONNECT_MAX_ATTEMPTS

    def delay(self, attempt: int) -> float:
        """Delay before the 1-based *attempt*."""
        return min(self.base_delay * (2 ** max(0, attempt - 1)), self.max_delay)

    def schedule(self) -> list[float]:
        return [self.delay(attempt) for attempt in range(1, self.max_attempts + 1)]


Opener = Callable[[], Awaitable[None]]
FailureCallback = Callable[[str, str], None]
Sleeper = Callable[[float], Awaitable[None]]


class ReconnectSupervisor:
    """Track link health and re-open the link after a loss.

    In ``BACKOFF`` mode a loss starts a retry task that waits ``policy.delay(n)``
    before the n-th open attempt; a successful open resets the counter and
    exhausting ``max_attempts`` ends in the terminal ``failed`` state. In
    ``MANUAL`` mode a loss goes straight to ``failed``.
    """

    STATE_DISCONNECTED = "disconnected"
    STATE_CONNECTED = "connected"
    STATE_RECONNECTING = "reconnecting"
    STATE_FAILED = "failed"

    def __init__(
        self,
        opener: Opener,
        policy: BackoffPolicy | None = None,
        *,
        mode: ReconnectMode = ReconnectMode.BACKOFF,
        on_failed: FailureCallback | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._opener = opener
        self.policy = policy or BackoffPolicy()
        self.mode = ReconnectMode(mode)
        self._on_failed = on_failed
        self._sleep = sleep
        self.attempts = 0
        self._retry_task: asyncio.Task[None] | None = None
        self.fsm_state = self.STATE_DISCONNECTED

        self.machine = Machine(
            model=self,
            states=[
                self.STATE_DISCONNECTED,
                self.STATE_CONNECTED,
                self.STATE_RECONNECTING,
                self.STATE_FAILED,
            ],
            initial=self.STATE_DISCONNECTED,
            model_attribute="fsm_state",
            ignore_invalid_triggers=True,
        )
        self.machine.add_transition(
            "link_up",
            [self.STATE_DISCONNECTED, self.STATE_RECONNECTING, self.STATE_CONNECTED],
            self.STATE_CONNECTED,
            after="_reset_attempts",
        )
        self.machine.add_transition(
            "link_down",
            [self.STATE_DISCONNECTED, self.STATE_CONNECTED],
            self.STATE_RECONNECTING,
            conditions="_auto_reconnect",
        )
        self.machine.add_transition(
            "link_down",
            [self.STATE_DISCONNECTED, self.STATE_CONNECTED],
            self.STATE_FAILED,
            unless="_auto_reconnect",
        )
        self.machine.add_transition("give_up", self.STATE_RECONNECTING, self.STATE_FAILED)

    @property
    def failed(self) -> bool:
        return self.fsm_state == self.STATE_FAILED

    @property
    def retry_pending(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    def _auto_reconnect(self) -> bool:
        return self.mode is ReconnectMode.BACKOFF

    def _reset_attempts(self) -> None:
        self.attempts = 0

    def link_restored(self) -> None:
        if self.failed:
            return
        self._cancel_retry()
        self.trigger("link_up")

    def link_lost(self, reason: str) -> None:
        """Handle a link loss.

        Losses reported while already reconnecting or failed are ignored; the
        running retry task owns recovery. In manual mode the caller is
        expected to have told subscribers to restart.
        """
        if self.fsm_state in (self.STATE_RECONNECTING, self.STATE_FAILED):
            logger.debug("Ignoring link loss (%s) while %s", reason, self.fsm_state)
            return
        self.trigger("link_down")
        if self.fsm_state == self.STATE_FAILED:
            logger.critical("Serial link lost (%s); auto-reconnect disabled.", reason)
            return
        logger.warning("Serial link lost (%s); reconnecting.", reason)
        self._cancel_retry()
        self._retry_task = asyncio.create_task(self._retry_loop(), name="serial-reconnect")

    async def stop(self) -> None:
        task = self._retry_task
        self._cancel_retry()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _cancel_retry(self) -> None:
        task, self._retry_task = self._retry_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _wait(self, retry_state: tenacity.RetryCallState) -> float:
        # The first delay is slept before the first attempt.
        return self.policy.delay(retry_state.attempt_number + 1)

    def _before_attempt(self, retry_state: tenacity.RetryCallState) -> None:
        self.attempts = retry_state.attempt_number
        logger.info("Reconnect attempt %d/%d", self.attempts, self.policy.max_attempts)

    def _before_sleep(self, retry_state: tenacity.RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning("Reconnect attempt %d failed (%s); next in %.1fs", retry_state.attempt_number, exc, delay)

    async def _retry_loop(self) -> None:
        retryer = tenacity.AsyncRetrying(
            sleep=self._sleep,
            wait=self._wait,
            stop=tenacity.stop_after_attempt(self.policy.max_attempts),
            retry=tenacity.retry_if_exception_type(LinkFailure),
            before=self._before_attempt,
            before_sleep=self._before_sleep,
            reraise=True,
        )
        try:
            await self._sleep(self.policy.delay(1))
            async for attempt in retryer:
                with attempt:
                    await self._opener()
        except LinkFailure as exc:
            self.trigger("give_up")
            logger.critical("Giving up on serial link after %d attempts: %s", self.attempts, exc)
            self._notify_failed(
                "Reconnect Failed",
                f"Unable to reconnect after {self.attempts} attempts. "
                "Please check the connection and restart the application.",
            )
            return
        except Exception as exc:
            self.trigger("give_up")
            logger.exception("Reconnect aborted by unexpected error")
            self._notify_failed(
                "Reconnect Failed",
                f"Reconnect stopped after an unexpected error: {exc}. Please restart the application.",
            )
            return
        logger.info("Serial link re-established after %d attempt(s)", self.attempts)
        self.trigger("link_up")

    def _notify_failed(self, title: str, message: str) -> None:
        if self._on_failed is not None:
            self._on_failed(title, message)


__all__ = ["BackoffPolicy", "MANUAL_RESTART_MESSAGE", "ReconnectMode", "ReconnectSupervisor"]
