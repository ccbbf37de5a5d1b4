"""Typed failures raised by the funnel engine.

An unmatched user reply is not in this module: it is the escalation path and
always succeeds.
"""

from typing import Optional


class FunnelEngineError(Exception):
    """Base class for all engine failures."""

    code = "engine_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(FunnelEngineError):
    """Conversation, funnel, stage, block or tenant is missing (or belongs to another tenant)."""

    code = "not_found"


class ValidationError(FunnelEngineError):
    """Request can never succeed as issued. Not retriable."""

    code = "validation_error"


class FunnelValidationError(ValidationError):
    """Stored funnel flow does not form a valid graph."""

    code = "invalid_funnel"


class ConversationClosedError(ValidationError):
    """Conversation is closed, abandoned or has reached the end of its path."""

    code = "conversation_closed"


class StorageError(FunnelEngineError):
    """Persistence layer failed. Nothing was committed; callers may retry."""

    code = "storage_error"


class DeliveryError(FunnelEngineError):
    """Outbound direct message failed after the state change was committed."""

    code = "delivery_error"

    def __init__(self, message: str, block_id: Optional[str] = None):
        super().__init__(message)
        self.block_id = block_id
