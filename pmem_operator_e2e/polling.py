"""
Bounded-retry polling primitives: eventually() and consistently().

Both re-query state directly instead of waiting for notifications, so missed
or delayed watch events never decide the outcome of an assertion.

A predicate may
  - return a truthy/falsy value,
  - return a CheckResult (error=None means satisfied; final=True aborts),
  - raise an exception (treated as "not yet"),
  - raise FinalError (aborts eventually() immediately).
"""
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Union

from rich.console import Console

from pmem_operator_e2e.config import POLL_INTERVAL
from pmem_operator_e2e.errors import (
    ConsistencyError,
    DeadlineExceeded,
    FinalError,
    PollTimeoutError,
    TerminalFailure,
)

console = Console()

# Print every Nth poll (and the first one)
LOG_EVERY = 4


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one check: error is None on success, final means retrying is pointless."""
    error: Optional[Union[str, Exception]] = None
    final: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    def __bool__(self):
        return self.ok


@dataclass(frozen=True)
class PollResult:
    ok: bool
    last_error: Optional[Union[str, Exception]]
    attempts: int
    elapsed: float
    final: bool = False
    deadline_exceeded: bool = False

    def __bool__(self):
        return self.ok


class Deadline:
    """Wall-clock budget of one test case. Every bounded wait is clipped to it."""

    def __init__(self, seconds: float):
        self.seconds = seconds
        self.started_at = time.monotonic()
        self.expires_at = self.started_at + seconds

    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def check(self, what: str = "test case"):
        if self.expired():
            raise DeadlineExceeded(f"{what}: per-test deadline of {self.seconds:.0f}s exceeded")


def _sample(predicate: Callable[[], Any]) -> Tuple[bool, Optional[Union[str, Exception]], bool]:
    try:
        outcome = predicate()
    except FinalError as e:
        return False, e, True
    except Exception as e:
        return False, e, False
    if isinstance(outcome, CheckResult):
        return outcome.ok, outcome.error, outcome.final
    return bool(outcome), None, False


def _window(timeout: float, interval: float, deadline: Optional[Deadline]) -> Tuple[float, float, bool]:
    if interval <= 0:
        raise ValueError(f"poll interval must be positive, got {interval}")
    if timeout < 0:
        raise ValueError(f"timeout must not be negative, got {timeout}")
    start = time.monotonic()
    end = start + timeout
    clipped = False
    if deadline is not None and deadline.expires_at < end:
        end = deadline.expires_at
        clipped = True
    return start, end, clipped


def eventually(
    predicate: Callable[[], Any],
    timeout: float,
    interval: float = POLL_INTERVAL,
    description: str = "condition",
    deadline: Optional[Deadline] = None,
) -> PollResult:
    """
    Call predicate immediately and then at most once per interval until it
    is satisfied, a final error is reported, or the next call would start
    after timeout (or after the deadline, whichever is earlier).
    """
    start, end, clipped = _window(timeout, interval, deadline)
    attempts = 0
    last_error = None

    console.print(f"[cyan]Polling for {description}...[/cyan]")
    console.print(f"[dim]Timeout: {timeout}s, Poll interval: {interval}s[/dim]")

    while True:
        attempts += 1
        call_start = time.monotonic()
        if attempts % LOG_EVERY == 0 or attempts == 1:
            console.print(f"[dim]Poll #{attempts} at {call_start - start:.0f}s: Checking {description}...[/dim]")

        ok, error, final = _sample(predicate)
        elapsed = time.monotonic() - start
        if ok:
            console.print(f"[green]✓ Condition met: {description} (after {elapsed:.1f}s, {attempts} polls)[/green]")
            return PollResult(True, None, attempts, elapsed)
        if error is not None:
            if str(error) != str(last_error):
                console.print(f"[yellow]Poll #{attempts} error: {error}[/yellow]")
            last_error = error
        if final:
            console.print(f"[red]✗ Final error while waiting for {description}: {error}[/red]")
            return PollResult(False, last_error, attempts, elapsed, final=True)

        next_at = call_start + interval
        if next_at > end:
            break
        time.sleep(max(0.0, next_at - time.monotonic()))

    elapsed = time.monotonic() - start
    console.print(f"[red]✗ Timeout waiting for {description} after {elapsed:.1f}s ({attempts} polls)[/red]")
    return PollResult(False, last_error, attempts, elapsed, deadline_exceeded=clipped)


def consistently(
    predicate: Callable[[], Any],
    duration: float,
    interval: float = POLL_INTERVAL,
    description: str = "condition",
    deadline: Optional[Deadline] = None,
) -> PollResult:
    """
    Sample predicate immediately and then once per interval for the whole
    duration. The first failing sample ends the check.
    """
    start, end, clipped = _window(duration, interval, deadline)
    attempts = 0

    console.print(f"[cyan]Checking that {description} holds for {duration}s (every {interval}s)...[/cyan]")

    while True:
        attempts += 1
        call_start = time.monotonic()
        ok, error, final = _sample(predicate)
        elapsed = time.monotonic() - start
        if not ok:
            if error is None:
                error = "condition returned False"
            console.print(f"[red]✗ {description} failed at sample #{attempts} ({elapsed:.1f}s): {error}[/red]")
            return PollResult(False, error, attempts, elapsed, final=final)
        console.print(f"[dim]Sample #{attempts} at {elapsed:.0f}s: {description} holds[/dim]")

        next_at = call_start + interval
        if next_at > end:
            break
        time.sleep(max(0.0, next_at - time.monotonic()))

    elapsed = time.monotonic() - start
    if clipped:
        error = DeadlineExceeded(f"deadline reached after {elapsed:.1f}s of {duration}s")
        return PollResult(False, error, attempts, elapsed, deadline_exceeded=True)
    console.print(f"[green]✓ {description} held for {elapsed:.1f}s ({attempts} samples)[/green]")
    return PollResult(True, None, attempts, elapsed)


def assert_eventually(
    predicate: Callable[[], Any],
    timeout: float,
    interval: float = POLL_INTERVAL,
    description: str = "condition",
    deadline: Optional[Deadline] = None,
    fail_message: Optional[str] = None,
) -> PollResult:
    """eventually(), raising an AssertionError subclass on failure."""
    result = eventually(predicate, timeout, interval, description, deadline)
    if result.ok:
        return result
    if result.final:
        raise TerminalFailure(fail_message or description, result.last_error)
    if result.deadline_exceeded:
        raise DeadlineExceeded(
            f"{fail_message or description}: per-test deadline reached after "
            f"{result.elapsed:.1f}s ({result.attempts} polls), last error: {result.last_error}"
        )
    error = PollTimeoutError(description, result.elapsed, result.attempts, result.last_error)
    if fail_message:
        error.args = (f"{fail_message}: {error}",)
    raise error


def assert_consistently(
    predicate: Callable[[], Any],
    duration: float,
    interval: float = POLL_INTERVAL,
    description: str = "condition",
    deadline: Optional[Deadline] = None,
) -> PollResult:
    """consistently(), raising an AssertionError subclass on failure."""
    result = consistently(predicate, duration, interval, description, deadline)
    if result.ok:
        return result
    if result.final:
        raise TerminalFailure(description, result.last_error)
    if result.deadline_exceeded:
        raise DeadlineExceeded(f"{description}: {result.last_error}")
    raise ConsistencyError(description, result.elapsed, result.attempts, result.last_error)
