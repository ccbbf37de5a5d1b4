from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class StartConversationRequest(BaseModel):
    funnel_id: UUID
    external_user_id: str = Field(min_length=1)


class MessageRequest(BaseModel):
    content: str


class NavigateRequest(BaseModel):
    option_text: str = Field(min_length=1)


class TransitionRequest(BaseModel):
    stage_name: str = Field(min_length=1)


class CompleteTransitionRequest(BaseModel):
    message_template: str
    stage_name: str = "EXPERIENCE_QUALIFICATION"


class PhaseTransitionSchema(BaseModel):
    from_phase: str
    to_phase: str


class ConversationSchema(BaseModel):
    id: str
    experience_id: str
    funnel_id: str
    external_user_id: str
    status: str
    current_block_id: Optional[str] = None
    path: list[str] = []
    phase2_start_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MessageSchema(BaseModel):
    id: Optional[str] = None
    role: str
    content: str
    metadata: dict = {}
    created_at: Optional[datetime] = None


class MessageResponse(BaseModel):
    success: bool
    bot_message: str
    next_block_id: Optional[str] = None
    phase_transition: Optional[PhaseTransitionSchema] = None
    escalation_level: int = 0
    conversation_closed: bool = False


class StartConversationResponse(BaseModel):
    success: bool
    conversation: ConversationSchema
    bot_message: str
    closed_conversation_ids: list[str] = []


class ConversationResponse(BaseModel):
    conversation: ConversationSchema
    messages: list[MessageSchema]


class TransitionResponse(BaseModel):
    success: bool
    conversation: ConversationSchema
    block_id: str
    phase_transition: Optional[PhaseTransitionSchema] = None
    message: Optional[str] = None


class StatusResponse(BaseModel):
    success: bool
    conversation: ConversationSchema
