"""
Error taxonomy of the harness.

Transient failures never leave the poller and write conflicts never leave the
conflict injector, so only the assertion-style errors below reach a test.
"""
from kubernetes import client


class NotFoundError(Exception):
    """The object does not exist (HTTP 404)."""


class ConflictError(Exception):
    """Optimistic concurrency rejection on write (HTTP 409)."""


class AlreadyExistsError(Exception):
    """Create of an object whose name is taken (HTTP 409 on create)."""


class FinalError(Exception):
    """
    Raised by a predicate to declare that the awaited condition cannot
    become true any more. Aborts the surrounding eventually() immediately.
    """


class PollTimeoutError(AssertionError):
    """A bounded wait elapsed without the condition being satisfied."""

    def __init__(self, description, elapsed, attempts, last_error=None):
        self.description = description
        self.elapsed = elapsed
        self.attempts = attempts
        self.last_error = last_error
        message = f"Timeout waiting for {description} after {elapsed:.1f}s ({attempts} polls)"
        if last_error is not None:
            message += f": last error: {last_error}"
        super().__init__(message)


class ConsistencyError(AssertionError):
    """A sample taken by consistently() failed."""

    def __init__(self, description, elapsed, attempts, last_error=None):
        self.description = description
        self.elapsed = elapsed
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{description} stopped holding after {elapsed:.1f}s (sample #{attempts}): {last_error}"
        )


class TerminalFailure(AssertionError):
    """A check reported a final error; waiting longer cannot help."""

    def __init__(self, description, error):
        self.description = description
        self.error = error
        super().__init__(f"{description}: final error: {error}")


class DeadlineExceeded(AssertionError):
    """The per-test wall-clock budget ran out."""


class RecoveryTimeoutError(PollTimeoutError):
    """A deleted owned object was not re-created in time."""

    def __init__(self, ref, elapsed, attempts, last_error=None):
        self.ref = ref
        super().__init__(f"{ref.kind}/{ref.name} to be recovered", elapsed, attempts, last_error)


def translate_api_exception(e: client.exceptions.ApiException, creating: bool = False) -> Exception:
    """Map an ApiException onto the harness taxonomy; unknown statuses are returned unchanged."""
    if e.status == 404:
        return NotFoundError(e.reason)
    if e.status == 409:
        if creating:
            return AlreadyExistsError(e.reason)
        return ConflictError(e.reason)
    return e


class ScenarioStateError(AssertionError):
    """A scenario step was taken from a state that does not allow it."""
