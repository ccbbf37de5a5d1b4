import functools
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from funnelchat.logging_config import get_logger
from funnelchat.models import Conversation, Experience, Funnel, FunnelInteraction, Message, Resource
from funnelchat.services.errors import NotFoundError, StorageError
from funnelchat.services.state_machine import ConversationStatus
from funnelchat.services.storage.base import (
    ConversationRecord,
    ConversationStore,
    InteractionLog,
    MessageLog,
    MessageRecord,
    ResourceCatalog,
    ResourceRecord,
    TenantDirectory,
    TenantRecord,
)

logger = get_logger("sql_store")


def _as_uuid(value: Any) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def _storage_errors(method):
    """Translate SQLAlchemy failures into StorageError."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(
                f"Storage operation {method.__name__} failed: {e}",
                extra={"context": {"operation": method.__name__}},
            )
            raise StorageError(f"Storage operation {method.__name__} failed") from e

    return wrapper


def _to_record(conversation: Conversation) -> ConversationRecord:
    return ConversationRecord(
        id=str(conversation.id),
        experience_id=str(conversation.experience_id),
        funnel_id=str(conversation.funnel_id),
        external_user_id=conversation.external_user_id,
        status=conversation.status,
        current_block_id=conversation.current_block_id,
        path=tuple(conversation.user_path or ()),
        phase2_start_time=conversation.phase2_start_time,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


class SqlFunnelStore(ConversationStore, ResourceCatalog, TenantDirectory):
    """SQLAlchemy-backed conversation storage. Writes are flushed; commit is the caller's call."""

    def __init__(self, db: Session):
        self.db = db

    def _get_conversation(self, conversation_id: str, experience_id: str) -> Optional[Conversation]:
        conversation_uuid = _as_uuid(conversation_id)
        experience_uuid = _as_uuid(experience_id)
        if conversation_uuid is None or experience_uuid is None:
            return None
        return (
            self.db.query(Conversation)
            .filter(Conversation.id == conversation_uuid, Conversation.experience_id == experience_uuid)
            .first()
        )

    def _require_conversation(self, conversation_id: str, experience_id: str) -> Conversation:
        conversation = self._get_conversation(conversation_id, experience_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    @_storage_errors
    def load(self, conversation_id: str, experience_id: str) -> Optional[ConversationRecord]:
        conversation = self._get_conversation(conversation_id, experience_id)
        return _to_record(conversation) if conversation else None

    @_storage_errors
    def find_active(self, external_user_id: str, experience_id: str) -> list[ConversationRecord]:
        experience_uuid = _as_uuid(experience_id)
        if experience_uuid is None:
            return []
        conversations = (
            self.db.query(Conversation)
            .filter(
                Conversation.experience_id == experience_uuid,
                Conversation.external_user_id == external_user_id,
                Conversation.status == ConversationStatus.ACTIVE.value,
            )
            .all()
        )
        return [_to_record(c) for c in conversations]

    @_storage_errors
    def create(
        self,
        experience_id: str,
        funnel_id: str,
        external_user_id: str,
        start_block_id: str,
    ) -> ConversationRecord:
        now = datetime.now(timezone.utc)
        conversation = Conversation(
            experience_id=_as_uuid(experience_id),
            funnel_id=_as_uuid(funnel_id),
            external_user_id=external_user_id,
            status=ConversationStatus.ACTIVE.value,
            current_block_id=start_block_id,
            user_path=[start_block_id],
            created_at=now,
            updated_at=now,
        )
        self.db.add(conversation)
        self.db.flush()
        return _to_record(conversation)

    @_storage_errors
    def update_block_and_path(
        self,
        conversation_id: str,
        experience_id: str,
        block_id: Optional[str],
        append_to_path: Optional[str] = None,
        phase2_start_time: Optional[datetime] = None,
    ) -> ConversationRecord:
        conversation = self._require_conversation(conversation_id, experience_id)
        conversation.current_block_id = block_id
        if append_to_path is not None:
            # Reassign so the JSONB column is marked dirty.
            conversation.user_path = [*(conversation.user_path or []), append_to_path]
        if phase2_start_time is not None and conversation.phase2_start_time is None:
            conversation.phase2_start_time = phase2_start_time
        conversation.updated_at = datetime.now(timezone.utc)
        self.db.flush()
        return _to_record(conversation)

    @_storage_errors
    def update_status(self, conversation_id: str, experience_id: str, status: str) -> ConversationRecord:
        conversation = self._require_conversation(conversation_id, experience_id)
        conversation.status = status
        conversation.updated_at = datetime.now(timezone.utc)
        self.db.flush()
        return _to_record(conversation)

    @_storage_errors
    def load_funnel(self, funnel_id: str, experience_id: str, deployed_only: bool = False) -> Optional[Any]:
        funnel_uuid = _as_uuid(funnel_id)
        experience_uuid = _as_uuid(experience_id)
        if funnel_uuid is None or experience_uuid is None:
            return None
        query = self.db.query(Funnel).filter(Funnel.id == funnel_uuid, Funnel.experience_id == experience_uuid)
        if deployed_only:
            query = query.filter(Funnel.is_deployed.is_(True))
        funnel = query.first()
        return funnel.flow if funnel else None

    @_storage_errors
    def list_messages(self, conversation_id: str, experience_id: str) -> list[MessageRecord]:
        conversation = self._get_conversation(conversation_id, experience_id)
        if conversation is None:
            return []
        messages = (
            self.db.query(Message)
            .filter(Message.conversation_id == conversation.id)
            .order_by(Message.created_at.asc())
            .all()
        )
        return [
            MessageRecord(
                conversation_id=str(m.conversation_id),
                role=m.role,
                content=m.content,
                metadata=m.message_metadata or {},
                created_at=m.created_at,
                id=str(m.id),
            )
            for m in messages
        ]

    @_storage_errors
    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        try:
            self.db.rollback()
        except SQLAlchemyError as e:
            logger.error(f"Rollback failed: {e}")

    @_storage_errors
    def find_by_name_and_tenant(self, name: str, experience_id: str) -> Optional[ResourceRecord]:
        experience_uuid = _as_uuid(experience_id)
        if experience_uuid is None:
            return None
        resource = (
            self.db.query(Resource)
            .filter(Resource.name == name, Resource.experience_id == experience_uuid)
            .first()
        )
        if resource is None:
            return None
        return ResourceRecord(id=str(resource.id), name=resource.name, link=resource.link)

    @_storage_errors
    def get_tenant(self, experience_id: str) -> Optional[TenantRecord]:
        experience_uuid = _as_uuid(experience_id)
        if experience_uuid is None:
            return None
        experience = self.db.query(Experience).filter(Experience.id == experience_uuid).first()
        if experience is None:
            return None
        return TenantRecord(
            id=str(experience.id),
            platform_experience_id=experience.platform_experience_id,
            platform_company_id=experience.platform_company_id,
            name=experience.name,
        )


class SqlMessageLog(MessageLog):
    def __init__(self, db: Session):
        self.db = db

    @_storage_errors
    def append(self, conversation_id: str, role: str, content: str, metadata: Optional[dict] = None) -> str:
        message = Message(
            id=uuid4(),
            conversation_id=_as_uuid(conversation_id),
            role=role,
            content=content,
            message_metadata=metadata or {},
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(message)
        self.db.flush()
        return str(message.id)


class SqlInteractionLog(InteractionLog):
    def __init__(self, db: Session):
        self.db = db

    @_storage_errors
    def append(
        self,
        conversation_id: str,
        block_id: str,
        option_text: str,
        next_block_id: Optional[str],
        metadata: Optional[dict] = None,
    ) -> None:
        interaction = FunnelInteraction(
            conversation_id=_as_uuid(conversation_id),
            block_id=block_id,
            option_text=option_text,
            next_block_id=next_block_id,
            interaction_metadata=metadata or {},
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(interaction)
        self.db.flush()
