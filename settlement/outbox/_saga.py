"""
Compensated step chains for side-effect delivery.

A delivery is two steps: claim the outbox row, then run its handler. The claim
records a compensator; if the handler fails, compensators run in reverse and
the row is released for another attempt.

    chain = from_async(claim, on_error=as_failure, compensate=release).then(
        lambda ev: from_async(lambda: handle(ev), on_error=as_failure)
    )
    match await run_chain(chain):
        case Ok(done):
            ...
        case Error(failed):
            log.warning("effect_failed", error=failed.error)
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from combinators import lift as L
from kungfu import Error, LazyCoroResult, Ok, Result

from settlement._log import get_logger

log = get_logger("outbox")

type Compensator[T] = Callable[[T], Awaitable[None]]
type RecordedCompensator[T] = tuple[T, Compensator[T]]


# ═══════════════════════════════════════════════════════════════════════════════
# Steps
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SagaStep[T, E]:
    """An action plus the compensator recorded when it succeeds."""

    action: LazyCoroResult[T, E]
    compensate: Compensator[T] | None = None

    def then[U, E2](self, f: Callable[[T], SagaStep[U, E2]]) -> Then[T, U, E, E2]:
        return Then(self, f)


@dataclass(frozen=True, slots=True)
class Then[T, U, E, E2]:
    inner: SagaStep[T, E]
    f: Callable[[T], SagaStep[U, E2]]


@dataclass(frozen=True, slots=True)
class SagaResult[T]:
    value: T
    steps_executed: int


@dataclass(frozen=True, slots=True)
class SagaError[E]:
    error: E
    step_failed: int
    compensators_run: int
    compensators_failed: int

    @property
    def rollback_complete(self) -> bool:
        return self.compensators_failed == 0


def step[T, E](
    action: LazyCoroResult[T, E],
    compensate: Compensator[T] | None = None,
) -> SagaStep[T, E]:
    return SagaStep(action=action, compensate=compensate)


def from_async[T, E](
    action: Callable[[], Awaitable[T]],
    on_error: Callable[[Exception], E],
    compensate: Compensator[T] | None = None,
) -> SagaStep[T, E]:
    """Step from a plain coroutine function; exceptions become `Error(on_error(e))`."""
    return step(L.catching_async(action, on_error=on_error), compensate)


# ═══════════════════════════════════════════════════════════════════════════════
# Execution
# ═══════════════════════════════════════════════════════════════════════════════


async def run_step[T, E](
    saga: SagaStep[T, E],
    compensators: list[RecordedCompensator[T]],
) -> Result[T, E]:
    match await saga.action:
        case Ok(value):
            if saga.compensate is not None:
                compensators.append((value, saga.compensate))
            return Ok(value)
        case Error(e):
            return Error(e)


async def run_compensators[T](compensators: list[RecordedCompensator[T]]) -> tuple[int, int]:
    """Reverse order. Returns (run, failed); a failing compensator does not stop the rest."""
    ran = 0
    failed = 0
    for value, compensate in reversed(compensators):
        try:
            await compensate(value)
            ran += 1
        except Exception as e:
            failed += 1
            log.error("compensation_failed", error=f"{type(e).__name__}: {e}")
    return ran, failed


async def run_chain[T, U, E, E2](
    chain: Then[T, U, E, E2],
) -> Result[SagaResult[U], SagaError[E | E2]]:
    first: list[RecordedCompensator[T]] = []
    second: list[RecordedCompensator[U]] = []

    match await run_step(chain.inner, first):
        case Error(e):
            ran, failed = await run_compensators(first)
            return Error(SagaError(error=e, step_failed=1, compensators_run=ran, compensators_failed=failed))
        case Ok(value):
            pass

    match await run_step(chain.f(value), second):
        case Ok(final):
            return Ok(SagaResult(value=final, steps_executed=2))
        case Error(e2):
            ran_u, failed_u = await run_compensators(second)
            ran_t, failed_t = await run_compensators(first)
            return Error(
                SagaError(
                    error=e2,
                    step_failed=2,
                    compensators_run=ran_u + ran_t,
                    compensators_failed=failed_u + failed_t,
                )
            )


__all__ = (
    "Compensator",
    "SagaStep",
    "Then",
    "SagaResult",
    "SagaError",
    "step",
    "from_async",
    "run_step",
    "run_compensators",
    "run_chain",
)
