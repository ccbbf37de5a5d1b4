from funnelchat.schemas.conversation import (
    CompleteTransitionRequest,
    ConversationResponse,
    MessageRequest,
    MessageResponse,
    NavigateRequest,
    StartConversationRequest,
    StartConversationResponse,
    StatusResponse,
    TransitionRequest,
    TransitionResponse,
)

__all__ = [
    "StartConversationRequest",
    "StartConversationResponse",
    "MessageRequest",
    "MessageResponse",
    "NavigateRequest",
    "TransitionRequest",
    "TransitionResponse",
    "CompleteTransitionRequest",
    "ConversationResponse",
    "StatusResponse",
]
