"""Error taxonomy for the sandbox memory subsystem."""

from __future__ import annotations


class SandboxMemoryError(Exception):
    """Base class for all subsystem errors."""


class NotFound(SandboxMemoryError):
    """Raised when an experiment or memory id does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidTransition(SandboxMemoryError):
    """Raised when a lifecycle change is not allowed from the current state."""

    def __init__(self, experiment_id: str, current: str, requested: str) -> None:
        self.experiment_id = experiment_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Experiment {experiment_id} cannot move from '{current}' to '{requested}'"
        )


class StoreUnavailable(SandboxMemoryError):
    """Raised when the durable store cannot be reached or written."""


class ScoringDegraded(SandboxMemoryError):
    """Internal scorer failure. Always resolved to the neutral baseline."""


class PromotionFailed(SandboxMemoryError):
    """Raised when one memory cannot be copied into the shared store."""

    def __init__(self, memory_id: str, reason: str) -> None:
        self.memory_id = memory_id
        self.reason = reason
        super().__init__(f"Promotion failed for memory {memory_id}: {reason}")
