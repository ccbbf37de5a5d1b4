from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from funnelchat.database import get_db
from funnelchat.logging_config import get_logger
from funnelchat.schemas.conversation import (
    CompleteTransitionRequest,
    ConversationResponse,
    ConversationSchema,
    MessageRequest,
    MessageResponse,
    MessageSchema,
    NavigateRequest,
    PhaseTransitionSchema,
    StartConversationRequest,
    StartConversationResponse,
    StatusResponse,
    TransitionRequest,
    TransitionResponse,
)
from funnelchat.services.analytics_service import SqlInterestTracker
from funnelchat.services.conversation_service import ConversationEngine, MessageOutcome, PhaseTransition
from funnelchat.services.errors import (
    DeliveryError,
    FunnelEngineError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from funnelchat.services.escalation_service import get_escalation_tracker
from funnelchat.services.link_resolver import LinkResolver
from funnelchat.services.platform_client import PlatformAppLinkGenerator, PlatformClient, PlatformMessenger
from funnelchat.services.storage import SqlFunnelStore, SqlInteractionLog, SqlMessageLog
from funnelchat.services.storage.base import ConversationRecord
from funnelchat.services.transition_service import TransitionController

logger = get_logger("conversations_router")

router = APIRouter(prefix="/conversations", tags=["conversations"])

MSG_STORAGE_UNAVAILABLE = "Temporary storage failure, please retry"
MSG_DELIVERY_FAILED = "Conversation updated but the message could not be delivered"


def get_engine(db: Session = Depends(get_db)) -> ConversationEngine:
    store = SqlFunnelStore(db)
    platform = PlatformClient()
    link_resolver = LinkResolver(
        resources=store,
        tenants=store,
        platform=platform,
        app_links=PlatformAppLinkGenerator(platform),
    )
    return ConversationEngine(
        store=store,
        messages=SqlMessageLog(db),
        interactions=SqlInteractionLog(db),
        link_resolver=link_resolver,
        escalation=get_escalation_tracker(),
        interest_tracker=SqlInterestTracker(),
    )


def get_transition_controller(engine: ConversationEngine = Depends(get_engine)) -> TransitionController:
    return TransitionController(engine, PlatformMessenger())


def to_http_exception(error: FunnelEngineError) -> HTTPException:
    """Map engine failures onto HTTP status codes without leaking internals."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=error.message)
    if isinstance(error, ValidationError):
        return HTTPException(
            status_code=422,
            detail={"code": error.code, "message": error.message},
        )
    if isinstance(error, StorageError):
        return HTTPException(status_code=503, detail=MSG_STORAGE_UNAVAILABLE)
    if isinstance(error, DeliveryError):
        return HTTPException(
            status_code=502,
            detail={"message": MSG_DELIVERY_FAILED, "block_id": error.block_id},
        )
    logger.error(f"Unmapped engine error: {error.message}")
    return HTTPException(status_code=500, detail="Internal error")


def _conversation_schema(record: ConversationRecord) -> ConversationSchema:
    return ConversationSchema.model_validate(asdict(record))


def _phase_schema(phase_transition: Optional[PhaseTransition]) -> Optional[PhaseTransitionSchema]:
    if phase_transition is None:
        return None
    return PhaseTransitionSchema(
        from_phase=phase_transition.from_phase.value,
        to_phase=phase_transition.to_phase.value,
    )


def _message_response(outcome: MessageOutcome) -> MessageResponse:
    return MessageResponse(
        success=True,
        bot_message=outcome.bot_message,
        next_block_id=outcome.next_block_id,
        phase_transition=_phase_schema(outcome.phase_transition),
        escalation_level=outcome.escalation_level,
        conversation_closed=outcome.conversation_closed,
    )


@router.post("", response_model=StartConversationResponse)
def start_conversation(
    request: StartConversationRequest,
    experience_id: str = Header(..., alias="X-Experience-Id"),
    engine: ConversationEngine = Depends(get_engine),
):
    """Start a conversation on a deployed funnel, closing the user's previous active one."""
    try:
        outcome = engine.start_conversation(experience_id, str(request.funnel_id), request.external_user_id)
    except FunnelEngineError as e:
        raise to_http_exception(e) from e
    return StartConversationResponse(
        success=True,
        conversation=_conversation_schema(outcome.conversation),
        bot_message=outcome.bot_message,
        closed_conversation_ids=outcome.closed_conversation_ids,
    )


@router.get("/{conversation_id}", response_model=ConversationResponse)
def get_conversation(
    conversation_id: str,
    experience_id: str = Header(..., alias="X-Experience-Id"),
    engine: ConversationEngine = Depends(get_engine),
):
    try:
        view = engine.get_conversation(conversation_id, experience_id)
    except FunnelEngineError as e:
        raise to_http_exception(e) from e
    return ConversationResponse(
        conversation=_conversation_schema(view.conversation),
        messages=[MessageSchema.model_validate(asdict(m)) for m in view.messages],
    )


@router.post("/{conversation_id}/messages", response_model=MessageResponse)
def process_message(
    conversation_id: str,
    request: MessageRequest,
    experience_id: str = Header(..., alias="X-Experience-Id"),
    engine: ConversationEngine = Depends(get_engine),
):
    """Handle a free-text user message."""
    try:
        outcome = engine.process_message(conversation_id, experience_id, request.content)
    except FunnelEngineError as e:
        raise to_http_exception(e) from e
    return _message_response(outcome)


@router.post("/{conversation_id}/navigate", response_model=MessageResponse)
def navigate(
    conversation_id: str,
    request: NavigateRequest,
    experience_id: str = Header(..., alias="X-Experience-Id"),
    engine: ConversationEngine = Depends(get_engine),
):
    """Handle an explicit option selection."""
    try:
        outcome = engine.navigate_to_next_block(conversation_id, experience_id, request.option_text)
    except FunnelEngineError as e:
        raise to_http_exception(e) from e
    return _message_response(outcome)


@router.post("/{conversation_id}/transition", response_model=TransitionResponse)
def transition_to_stage(
    conversation_id: str,
    request: TransitionRequest,
    experience_id: str = Header(..., alias="X-Experience-Id"),
    controller: TransitionController = Depends(get_transition_controller),
):
    try:
        outcome = controller.transition_to_stage(conversation_id, experience_id, request.stage_name)
    except FunnelEngineError as e:
        raise to_http_exception(e) from e
    return TransitionResponse(
        success=True,
        conversation=_conversation_schema(outcome.conversation),
        block_id=outcome.block_id,
        phase_transition=_phase_schema(outcome.phase_transition),
    )


@router.post("/{conversation_id}/complete-transition", response_model=TransitionResponse)
def complete_transition(
    conversation_id: str,
    request: CompleteTransitionRequest,
    experience_id: str = Header(..., alias="X-Experience-Id"),
    controller: TransitionController = Depends(get_transition_controller),
):
    try:
        outcome = controller.complete_transition(
            conversation_id, experience_id, request.message_template, stage_name=request.stage_name
        )
    except FunnelEngineError as e:
        raise to_http_exception(e) from e
    return TransitionResponse(
        success=True,
        conversation=_conversation_schema(outcome.conversation),
        block_id=outcome.block_id,
        message=outcome.message,
    )


@router.post("/{conversation_id}/abandon", response_model=StatusResponse)
def abandon_conversation(
    conversation_id: str,
    experience_id: str = Header(..., alias="X-Experience-Id"),
    engine: ConversationEngine = Depends(get_engine),
):
    try:
        record = engine.abandon(conversation_id, experience_id)
    except FunnelEngineError as e:
        raise to_http_exception(e) from e
    return StatusResponse(success=True, conversation=_conversation_schema(record))


@router.post("/{conversation_id}/close", response_model=StatusResponse)
def close_conversation(
    conversation_id: str,
    experience_id: str = Header(..., alias="X-Experience-Id"),
    engine: ConversationEngine = Depends(get_engine),
):
    try:
        record = engine.close(conversation_id, experience_id)
    except FunnelEngineError as e:
        raise to_http_exception(e) from e
    return StatusResponse(success=True, conversation=_conversation_schema(record))
