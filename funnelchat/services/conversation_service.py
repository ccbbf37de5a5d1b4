"""Conversation engine: drives a user through a funnel graph.

Each public operation is one unit of work against the store. All writes are
flushed as they happen and committed once at the end; any StorageError rolls
the whole unit back. Work that must not affect the caller (escalation tracker
updates, analytics) runs only after the commit succeeded.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from funnelchat.logging_config import conversation_logger, get_logger
from funnelchat.services.alert_service import alert_error
from funnelchat.services.analytics_service import InterestTracker
from funnelchat.services.background import run_in_background
from funnelchat.services.errors import (
    ConversationClosedError,
    FunnelValidationError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from funnelchat.services.escalation_service import (
    MAX_ESCALATION_LEVEL,
    EscalationTracker,
    build_escalation_message,
)
from funnelchat.services.funnel_graph import FunnelBlock, FunnelGraph, FunnelOption
from funnelchat.services.link_resolver import LinkResolver
from funnelchat.services.option_resolver import format_numbered_options, resolve_option
from funnelchat.services.phase_classifier import Phase, StageRole, classify_phase, is_phase2_entry, stage_role
from funnelchat.services.state_machine import ConversationStatus, abandon, close
from funnelchat.services.storage.base import (
    ConversationRecord,
    ConversationStore,
    InteractionLog,
    MessageLog,
    MessageRecord,
)

logger = get_logger("conversation_service")

DEFAULT_BOT_MESSAGE = "Thank you for your response."
PATH_ENDED_MESSAGE = "This path has ended. You can start over to explore other options."


@dataclass
class PhaseTransition:
    from_phase: Phase
    to_phase: Phase


@dataclass
class MessageOutcome:
    bot_message: str
    next_block_id: Optional[str] = None
    phase_transition: Optional[PhaseTransition] = None
    escalation_level: int = 0
    conversation_closed: bool = False


@dataclass
class StartOutcome:
    conversation: ConversationRecord
    bot_message: str
    closed_conversation_ids: list[str] = field(default_factory=list)


@dataclass
class ConversationView:
    conversation: ConversationRecord
    messages: list[MessageRecord]


@dataclass
class BlockMove:
    """Result of moving a conversation onto a block, before commit."""

    conversation: ConversationRecord
    block_id: str
    phase_transition: Optional[PhaseTransition]
    track_interest: bool


class ConversationEngine:
    def __init__(
        self,
        store: ConversationStore,
        messages: MessageLog,
        interactions: InteractionLog,
        link_resolver: LinkResolver,
        escalation: EscalationTracker,
        interest_tracker: InterestTracker,
        dispatch: Callable = run_in_background,
    ):
        self.store = store
        self.messages = messages
        self.interactions = interactions
        self.link_resolver = link_resolver
        self.escalation = escalation
        self.interest_tracker = interest_tracker
        self.dispatch = dispatch

    # Loading

    def _load_graph(self, funnel_id: str, experience_id: str, deployed_only: bool = False) -> FunnelGraph:
        flow = self.store.load_funnel(funnel_id, experience_id, deployed_only=deployed_only)
        if flow is None:
            raise NotFoundError(f"Funnel {funnel_id} not found")
        return FunnelGraph.from_flow(flow)

    def load_context(self, conversation_id: str, experience_id: str) -> tuple[ConversationRecord, FunnelGraph]:
        """Load a tenant-scoped conversation and its validated funnel graph. Never mutates."""
        conversation = self.store.load(conversation_id, experience_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        graph = self._load_graph(conversation.funnel_id, experience_id)
        if conversation.current_block_id is not None and graph.get_block(conversation.current_block_id) is None:
            raise FunnelValidationError(
                f"Conversation is positioned on block '{conversation.current_block_id}' which is not in the funnel"
            )
        return conversation, graph

    @staticmethod
    def is_open(conversation: ConversationRecord) -> bool:
        return conversation.status == ConversationStatus.ACTIVE.value and conversation.current_block_id is not None

    def abort_unit(self, error: StorageError, operation: str, context: dict) -> None:
        """Roll back the current unit of work, log it and alert ops."""
        self.store.rollback()
        logger.error(f"{operation} failed, rolled back: {error.message}", extra={"context": context})
        self.dispatch(alert_error, f"Funnel engine storage failure during {operation}", context)

    # Message formatting

    def format_block_message(self, block_id: str, graph: FunnelGraph, experience_id: str) -> str:
        """Destination block message with links resolved and options numbered."""
        message = self.link_resolver.resolve_block_message(block_id, graph, experience_id) or DEFAULT_BOT_MESSAGE
        options = format_numbered_options(graph.get_block(block_id))
        if options:
            message = f"{message}\n\n{options}"
        return message

    # Shared persistence path

    def move_to_block(self, conversation: ConversationRecord, graph: FunnelGraph, block_id: str) -> BlockMove:
        """Persist a move onto block_id with phase bookkeeping. Caller commits."""
        phase_before = classify_phase(conversation.current_block_id, graph)
        phase_after = classify_phase(block_id, graph)

        phase_transition = None
        if phase_before != phase_after:
            phase_transition = PhaseTransition(from_phase=phase_before, to_phase=phase_after)

        phase2_start_time = None
        if is_phase2_entry(phase_before, phase_after) and conversation.phase2_start_time is None:
            phase2_start_time = datetime.now(timezone.utc)

        updated = self.store.update_block_and_path(
            conversation.id,
            conversation.experience_id,
            block_id,
            append_to_path=block_id,
            phase2_start_time=phase2_start_time,
        )
        return BlockMove(
            conversation=updated,
            block_id=block_id,
            phase_transition=phase_transition,
            track_interest=stage_role(block_id, graph) == StageRole.PAIN_POINT_QUALIFICATION,
        )

    def track_interest(self, conversation: ConversationRecord) -> None:
        self.dispatch(self.interest_tracker.record_interest, conversation.experience_id, conversation.funnel_id)

    def _advance(
        self,
        conversation: ConversationRecord,
        graph: FunnelGraph,
        block: FunnelBlock,
        option: FunnelOption,
        user_input: str,
        source: str,
    ) -> tuple[MessageOutcome, Optional[BlockMove]]:
        self.interactions.append(
            conversation.id,
            block.id,
            option.text,
            option.next_block_id,
            {"source": source, "input": user_input},
        )

        if option.is_terminal:
            self.store.update_block_and_path(conversation.id, conversation.experience_id, None)
            self.store.update_status(
                conversation.id,
                conversation.experience_id,
                close(ConversationStatus(conversation.status)).value,
            )
            self.messages.append(conversation.id, "bot", PATH_ENDED_MESSAGE, {"terminal": True})
            return MessageOutcome(bot_message=PATH_ENDED_MESSAGE, conversation_closed=True), None

        move = self.move_to_block(conversation, graph, option.next_block_id)
        bot_message = self.format_block_message(move.block_id, graph, conversation.experience_id)
        self.messages.append(conversation.id, "bot", bot_message, {"block_id": move.block_id})
        outcome = MessageOutcome(
            bot_message=bot_message,
            next_block_id=move.block_id,
            phase_transition=move.phase_transition,
        )
        return outcome, move

    def _after_advance(self, conversation: ConversationRecord, move: Optional[BlockMove]) -> None:
        self.escalation.reset(conversation.id)
        if move is not None and move.track_interest:
            self.track_interest(conversation)

    # Public operations

    def process_message(self, conversation_id: str, experience_id: str, text: str) -> MessageOutcome:
        """Handle one free-text user message.

        Raises:
            NotFoundError: conversation or funnel missing for this tenant
            FunnelValidationError: stored funnel is not a valid graph
            ConversationClosedError: conversation is not accepting input (message is still logged)
            StorageError: persistence failed, nothing committed
        """
        conversation, graph = self.load_context(conversation_id, experience_id)
        log = conversation_logger("conversation_service", conversation.id, experience_id)

        move = None
        escalation_level = 0
        try:
            self.messages.append(conversation.id, "user", text)

            if not self.is_open(conversation):
                self.store.commit()
                outcome = None
            else:
                block = graph.get_block(conversation.current_block_id)
                option = resolve_option(text, block)
                if option is not None:
                    outcome, move = self._advance(conversation, graph, block, option, text, source="message")
                else:
                    escalation_level = min(self.escalation.current_level(conversation.id) + 1, MAX_ESCALATION_LEVEL)
                    bot_message = build_escalation_message(escalation_level, block)
                    self.messages.append(
                        conversation.id, "bot", bot_message, {"escalation_level": escalation_level}
                    )
                    outcome = MessageOutcome(bot_message=bot_message, escalation_level=escalation_level)
                self.store.commit()
        except StorageError as e:
            self.abort_unit(e, "process_message", {"conversation_id": conversation_id, "experience_id": experience_id})
            raise

        if outcome is None:
            log.info("Message received on closed conversation", context={"status": conversation.status})
            raise ConversationClosedError(f"Conversation {conversation_id} is not accepting messages")

        if escalation_level:
            self.escalation.bump_level(conversation.id)
            log.info("Input not resolved, escalating", context={"escalation_level": escalation_level})
        else:
            self._after_advance(conversation, move)
            log.info(
                "Conversation advanced",
                context={
                    "from_block_id": conversation.current_block_id,
                    "next_block_id": outcome.next_block_id,
                    "closed": outcome.conversation_closed,
                },
            )
        return outcome

    def navigate_to_next_block(self, conversation_id: str, experience_id: str, option_text: str) -> MessageOutcome:
        """Explicit option selection (e.g. a button click). No escalation: an unknown option is rejected."""
        conversation, graph = self.load_context(conversation_id, experience_id)
        if not self.is_open(conversation):
            raise ConversationClosedError(f"Conversation {conversation_id} is not accepting messages")

        block = graph.get_block(conversation.current_block_id)
        option = resolve_option(option_text, block)
        if option is None:
            raise ValidationError(f"Option '{option_text}' not found in block {block.id}")

        try:
            self.messages.append(conversation.id, "user", option_text)
            outcome, move = self._advance(conversation, graph, block, option, option_text, source="navigation")
            self.store.commit()
        except StorageError as e:
            self.abort_unit(e, "navigate_to_next_block", {"conversation_id": conversation_id, "experience_id": experience_id})
            raise

        self._after_advance(conversation, move)
        conversation_logger("conversation_service", conversation.id, experience_id).info(
            "Conversation navigated", context={"option": option.text, "next_block_id": outcome.next_block_id}
        )
        return outcome

    def start_conversation(self, experience_id: str, funnel_id: str, external_user_id: str) -> StartOutcome:
        """Open a conversation on the funnel's start block, closing the user's previous active ones."""
        graph = self._load_graph(funnel_id, experience_id, deployed_only=True)

        try:
            closed_ids = []
            for previous in self.store.find_active(external_user_id, experience_id):
                self.store.update_status(previous.id, experience_id, close(ConversationStatus(previous.status)).value)
                closed_ids.append(previous.id)

            conversation = self.store.create(experience_id, funnel_id, external_user_id, graph.start_block_id)
            welcome = self.format_block_message(graph.start_block_id, graph, experience_id)
            self.messages.append(conversation.id, "bot", welcome, {"block_id": graph.start_block_id})
            self.store.commit()
        except StorageError as e:
            self.abort_unit(e, "start_conversation", {"experience_id": experience_id, "funnel_id": funnel_id})
            raise

        self.dispatch(self.interest_tracker.record_start, experience_id, funnel_id)
        logger.info(
            "Conversation started",
            extra={
                "context": {
                    "conversation_id": conversation.id,
                    "experience_id": experience_id,
                    "funnel_id": funnel_id,
                    "closed_previous": len(closed_ids),
                }
            },
        )
        return StartOutcome(conversation=conversation, bot_message=welcome, closed_conversation_ids=closed_ids)

    def get_conversation(self, conversation_id: str, experience_id: str) -> ConversationView:
        conversation = self.store.load(conversation_id, experience_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return ConversationView(
            conversation=conversation,
            messages=self.store.list_messages(conversation_id, experience_id),
        )

    def _set_status(self, conversation_id: str, experience_id: str, change: Callable, operation: str) -> ConversationRecord:
        conversation = self.store.load(conversation_id, experience_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        new_status = change(ConversationStatus(conversation.status))
        try:
            updated = self.store.update_status(conversation_id, experience_id, new_status.value)
            self.store.commit()
        except StorageError as e:
            self.abort_unit(e, operation, {"conversation_id": conversation_id, "experience_id": experience_id})
            raise
        self.escalation.reset(conversation.id)
        logger.info(
            f"Conversation {new_status.value}",
            extra={"context": {"conversation_id": conversation.id, "experience_id": experience_id}},
        )
        return updated

    def abandon(self, conversation_id: str, experience_id: str) -> ConversationRecord:
        return self._set_status(conversation_id, experience_id, abandon, "abandon")

    def close(self, conversation_id: str, experience_id: str) -> ConversationRecord:
        return self._set_status(conversation_id, experience_id, close, "close")
