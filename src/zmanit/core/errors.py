# src/zmanit/core/errors.py

from __future__ import annotations


class EngineError(Exception):
    """Base class for errors surfaced by the scheduling/timer engine."""


class ConflictError(EngineError):
    """A second timer start was attempted while another task's timer is active."""

    def __init__(self, *, active_task_id: str, requested_task_id: str) -> None:
        self.active_task_id = active_task_id
        self.requested_task_id = requested_task_id
        super().__init__(
            f"timer for task {active_task_id} is active; switch explicitly to start {requested_task_id}"
        )


class InvalidStateError(EngineError):
    """The operation is not valid for the timer record's current state."""

    def __init__(self, task_id: str, reason: str) -> None:
        self.task_id = task_id
        self.reason = reason
        super().__init__(f"task {task_id}: {reason}")


class StoreUnavailable(EngineError):
    """A persistence collaborator failed to read or write."""
