"""
Retry — optimistic retry with bounded attempts and jittered backoff.

`Retry` is the settings object; `to_policy()` hands it to combinators as a
`RetryPolicy`, and `guarded` builds the whole unit as a flow:

    result = await guarded(
        lambda: self._commit(plan),
        retry=Retry(times=3).with_retry_on(is_transient_conflict),
        timeout=30.0,
    )

The action is re-invoked from scratch on every attempt, so a lost race
re-reads current state instead of reusing stale reads. The timeout bounds
each attempt, not the sum of them.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Protocol

from combinators import RetryPolicy, flow
from combinators import lift as L
from kungfu import LazyCoroResult
from sqlalchemy.exc import DBAPIError, OperationalError

from settlement._errors import SettlementError
from settlement._log import get_logger

log = get_logger("retry")


class RetryOn(Protocol):
    def __call__(self, err: BaseException) -> bool: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Policy
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Retry:
    """
    Retry settings.

    `times` is the total number of attempts (1 = no retry).
    Delay after failed attempt n is `backoff_initial × backoff_factor^(n-1)`,
    capped at `backoff_max`, spread by ±30% when jitter is on.
    """

    times: int = 3
    backoff_initial: float = 0.05
    backoff_factor: float = 2.0
    backoff_max: float = 1.0
    jitter: bool = True
    retry_on: RetryOn | None = None

    def with_backoff(
        self,
        initial: float,
        factor: float = 2.0,
        maximum: float = 1.0,
    ) -> Retry:
        return replace(
            self, backoff_initial=initial, backoff_factor=factor, backoff_max=maximum
        )

    def with_retry_on(self, predicate: RetryOn) -> Retry:
        return replace(self, retry_on=predicate)

    def without_jitter(self) -> Retry:
        return replace(self, jitter=False)

    def retryable(self, err: Exception) -> bool:
        # Domain errors are answers, not glitches.
        if isinstance(err, SettlementError):
            return False
        return self.retry_on(err) if self.retry_on is not None else False

    def to_policy(self) -> RetryPolicy[Exception]:
        if self.jitter:
            return RetryPolicy.exponential_jitter(
                times=self.times,
                initial=self.backoff_initial,
                multiplier=self.backoff_factor,
                max_delay=self.backoff_max,
                retry_on=self.retryable,
            )
        return RetryPolicy.exponential(
            times=self.times,
            initial=self.backoff_initial,
            multiplier=self.backoff_factor,
            max_delay=self.backoff_max,
            retry_on=self.retryable,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Transient conflict detection
# ═══════════════════════════════════════════════════════════════════════════════

_TRANSIENT_SQLSTATES = frozenset({"40001", "40P01"})
_TRANSIENT_MESSAGES = ("database is locked", "database table is locked")


def is_transient_conflict(err: BaseException) -> bool:
    """SQLite lock contention or a Postgres serialization failure / deadlock."""
    if isinstance(err, OperationalError):
        text = str(err.orig).lower()
        if any(m in text for m in _TRANSIENT_MESSAGES):
            return True
    if isinstance(err, DBAPIError):
        sqlstate = getattr(err.orig, "sqlstate", None) or getattr(err.orig, "pgcode", None)
        return sqlstate in _TRANSIENT_SQLSTATES
    return False


# ═══════════════════════════════════════════════════════════════════════════════
# Guarded unit
# ═══════════════════════════════════════════════════════════════════════════════


def _keep(err: Exception) -> Exception:
    return err


def guarded[T](
    action: Callable[[], Awaitable[T]],
    *,
    retry: Retry,
    timeout: float | None = None,
) -> LazyCoroResult[T, Exception]:
    """Run `action` as a flow: each attempt bounded by `timeout`, re-run per `retry`."""

    def note(err: Exception) -> None:
        if retry.retryable(err):
            log.warning("transient_failure", error=type(err).__name__, of=retry.times)

    attempt = flow(L.catching_async(action, on_error=_keep))
    bounded = attempt if timeout is None else attempt.timeout(seconds=timeout)
    return bounded.tap_err(note).retry(policy=retry.to_policy()).compile()


__all__ = ("RetryOn", "Retry", "is_transient_conflict", "guarded")
