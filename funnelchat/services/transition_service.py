from dataclasses import dataclass
from typing import Optional

from funnelchat.logging_config import conversation_logger
from funnelchat.services.alert_service import alert_warning
from funnelchat.services.conversation_service import ConversationEngine, PhaseTransition
from funnelchat.services.errors import ConversationClosedError, DeliveryError, NotFoundError, StorageError, ValidationError
from funnelchat.services.platform_client import DirectMessenger
from funnelchat.services.state_machine import ConversationStatus
from funnelchat.services.storage.base import ConversationRecord

DEFAULT_TRANSITION_STAGE = "EXPERIENCE_QUALIFICATION"


@dataclass
class TransitionOutcome:
    conversation: ConversationRecord
    block_id: str
    phase_transition: Optional[PhaseTransition] = None


@dataclass
class CompleteTransitionOutcome:
    conversation: ConversationRecord
    block_id: str
    message: str


class TransitionController:
    """Moves a conversation to the start of a named stage and notifies the user by DM."""

    def __init__(self, engine: ConversationEngine, messenger: DirectMessenger):
        self.engine = engine
        self.messenger = messenger

    def transition_to_stage(self, conversation_id: str, experience_id: str, stage_name: str) -> TransitionOutcome:
        conversation, graph = self.engine.load_context(conversation_id, experience_id)
        if conversation.status != ConversationStatus.ACTIVE.value:
            raise ConversationClosedError(f"Conversation {conversation_id} is {conversation.status}")

        stage = graph.stage_by_name(stage_name)
        if stage is None:
            raise NotFoundError(f"Stage {stage_name} not found in funnel")
        if not stage.block_ids:
            raise ValidationError(f"Stage {stage_name} has no blocks")

        try:
            move = self.engine.move_to_block(conversation, graph, stage.block_ids[0])
            self.engine.store.commit()
        except StorageError as e:
            self.engine.abort_unit(
                e, "transition_to_stage", {"conversation_id": conversation_id, "experience_id": experience_id}
            )
            raise

        self.engine.escalation.reset(conversation.id)
        if move.track_interest:
            self.engine.track_interest(conversation)

        conversation_logger("transition_service", conversation.id, experience_id).info(
            "Conversation transitioned", context={"stage": stage_name, "block_id": move.block_id}
        )
        return TransitionOutcome(conversation=move.conversation, block_id=move.block_id, phase_transition=move.phase_transition)

    def complete_transition(
        self,
        conversation_id: str,
        experience_id: str,
        message_template: str,
        stage_name: str = DEFAULT_TRANSITION_STAGE,
    ) -> CompleteTransitionOutcome:
        """Transition, then DM the user. A failed DM raises DeliveryError; the transition stays committed."""
        outcome = self.transition_to_stage(conversation_id, experience_id, stage_name)
        conversation = outcome.conversation
        message = self.engine.link_resolver.resolve_transition_message(message_template, conversation.id, experience_id)

        log = conversation_logger("transition_service", conversation.id, experience_id)
        result = self.messenger.send(conversation.external_user_id, message)
        if not result.ok:
            log.error("Transition DM failed", context={"error": result.error, "block_id": outcome.block_id})
            self.engine.dispatch(
                alert_warning,
                "Transition DM delivery failed",
                {"conversation_id": conversation.id, "experience_id": experience_id, "error": result.error},
            )
            raise DeliveryError(f"Failed to deliver transition message: {result.error}", block_id=outcome.block_id)

        log.info("Transition DM sent", context={"block_id": outcome.block_id})
        return CompleteTransitionOutcome(conversation=conversation, block_id=outcome.block_id, message=message)
