"""Error taxonomy for the identity-resolution layer."""

from __future__ import annotations


class ResolutionError(RuntimeError):
    pass


class ServiceUnavailableError(ResolutionError):
    """An external service (LLM, embeddings, vector search) failed or timed out.

    Always caught at the call site; the caller falls back to its degraded path.
    """

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service


class ReviewItemNotFoundError(ResolutionError):
    def __init__(self, item_id: int) -> None:
        super().__init__(f"review item {item_id} not found")
        self.item_id = item_id


class ReviewConflictError(ResolutionError):
    """The review item cannot take the requested transition (already resolved, no candidate)."""

    def __init__(self, item_id: int, reason: str) -> None:
        super().__init__(f"review item {item_id}: {reason}")
        self.item_id = item_id
        self.reason = reason
