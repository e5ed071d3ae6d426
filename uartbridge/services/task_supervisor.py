"""Restart-on-failure wrapper for the daemon's long-running tasks."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import tenacity

from ..const import (
    SUPERVISOR_DEFAULT_MAX_BACKOFF,
    SUPERVISOR_DEFAULT_MIN_BACKOFF,
    SUPERVISOR_DEFAULT_RESTART_INTERVAL,
    SUPERVISOR_MIN_RESTART_WINDOW,
)

FailureHook = Callable[[str, BaseException, bool], None]


@dataclass(slots=True)
class SupervisedTaskSpec:
    name: str
    factory: Callable[[], Awaitable[None]]
    fatal_exceptions: tuple[type[BaseException], ...] = ()
    max_restarts: int | None = None
    restart_interval: float = SUPERVISOR_DEFAULT_RESTART_INTERVAL
    min_backoff: float = SUPERVISOR_DEFAULT_MIN_BACKOFF
    max_backoff: float = SUPERVISOR_DEFAULT_MAX_BACKOFF


class _RestartTracker:
    """Logs restarts and decides when a task ran long enough to reset backoff."""

    def __init__(self, name: str, log: logging.Logger, window: float, on_failure: FailureHook | None) -> None:
        self.name = name
        self.log = log
        self.window = window
        self.on_failure = on_failure
        self.started_at = 0.0
        self.failures = 0

    def mark_started(self) -> None:
        self.started_at = time.monotonic()

    def ran_long_enough(self) -> bool:
        return self.started_at > 0 and (time.monotonic() - self.started_at) > self.window

    def before_sleep(self, retry_state: tenacity.RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        self.log.error("%s failed (%s); restarting in %.1fs", self.name, exc, delay)

    def after(self, retry_state: tenacity.RetryCallState) -> None:
        # Runs only for failures tenacity is going to retry; fatal ones never get here.
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if exc is None:
            return
        self.failures += 1
        if self.on_failure is not None:
            self.on_failure(self.name, exc, False)


async def supervise_task(
    name: str,
    coro_factory: Callable[[], Awaitable[None]],
    *,
    fatal_exceptions: tuple[type[BaseException], ...] = (),
    min_backoff: float = SUPERVISOR_DEFAULT_MIN_BACKOFF,
    max_backoff: float = SUPERVISOR_DEFAULT_MAX_BACKOFF,
    max_restarts: int | None = None,
    restart_interval: float = SUPERVISOR_DEFAULT_RESTART_INTERVAL,
    on_failure: FailureHook | None = None,
    logger: logging.Logger | None = None,
) -> None:
    """Await ``coro_factory()`` and restart it with exponential backoff when it raises.

    A clean return ends supervision. Exceptions listed in *fatal_exceptions*
    and cancellation propagate immediately. When the task had been running
    for longer than the restart window before failing, the backoff and the
    restart budget start over.
    """
    log = logger or logging.getLogger("uartbridge.supervisor")
    window = max(SUPERVISOR_MIN_RESTART_WINDOW, restart_interval)
    tracker = _RestartTracker(name, log, window, on_failure)

    while True:
        retryer = tenacity.AsyncRetrying(
            wait=tenacity.wait_exponential(multiplier=min_backoff, max=max_backoff),
            retry=tenacity.retry_if_not_exception_type(
                (asyncio.CancelledError, SystemExit, KeyboardInterrupt, GeneratorExit) + fatal_exceptions
            ),
            stop=tenacity.stop_after_attempt(max_restarts + 1) if max_restarts is not None else tenacity.stop_never,
            before_sleep=tracker.before_sleep,
            after=tracker.after,
            reraise=True,
        )
        try:
            async for attempt in retryer:
                with attempt:
                    tracker.mark_started()
                    await coro_factory()
                    log.warning("%s exited cleanly; supervisor exiting", name)
                    return
        except asyncio.CancelledError:
            log.debug("%s supervisor cancelled", name)
            raise
        except fatal_exceptions as exc:
            log.critical("%s failed with fatal exception: %s", name, exc)
            if on_failure is not None:
                on_failure(name, exc, True)
            raise
        except Exception:
            if tracker.ran_long_enough():
                log.info("%s was healthy long enough; resetting backoff", name)
                continue
            log.error("%s exceeded max restarts (%s); giving up", name, max_restarts)
            raise


__all__ = ["FailureHook", "SupervisedTaskSpec", "supervise_task"]
