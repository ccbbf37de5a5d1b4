from funnelchat.services.conversation_service import ConversationEngine, MessageOutcome
from funnelchat.services.errors import (
    ConversationClosedError,
    DeliveryError,
    FunnelEngineError,
    FunnelValidationError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from funnelchat.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    abandon,
    can_transition,
    close,
    transition,
)
from funnelchat.services.transition_service import TransitionController
