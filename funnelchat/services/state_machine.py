from enum import Enum

from funnelchat.services.errors import ValidationError


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    ABANDONED = "abandoned"


VALID_TRANSITIONS = {
    ConversationStatus.ACTIVE: [ConversationStatus.CLOSED, ConversationStatus.ABANDONED],
    ConversationStatus.CLOSED: [],
    ConversationStatus.ABANDONED: [],
}


class InvalidTransitionError(ValidationError):
    code = "invalid_transition"

    def __init__(self, from_status: ConversationStatus, to_status: ConversationStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status.value} -> {to_status.value}")


def can_transition(from_status: ConversationStatus, to_status: ConversationStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_status, [])
    return to_status in allowed


def transition(from_status: ConversationStatus, to_status: ConversationStatus) -> ConversationStatus:
    """Perform status transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status


def close(current_status: ConversationStatus) -> ConversationStatus:
    """Close a conversation (explicit completion or end of path)."""
    return transition(current_status, ConversationStatus.CLOSED)


def abandon(current_status: ConversationStatus) -> ConversationStatus:
    """Mark an idle conversation as abandoned."""
    return transition(current_status, ConversationStatus.ABANDONED)
