"""Persistence contracts used by the conversation engine.

The engine never touches the ORM directly. Every read and write is scoped by
experience_id (the tenant); a record that exists under another tenant is
reported as missing.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class ConversationRecord:
    id: str
    experience_id: str
    funnel_id: str
    external_user_id: str
    status: str
    current_block_id: Optional[str]
    path: tuple[str, ...] = ()
    phase2_start_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class MessageRecord:
    conversation_id: str
    role: str  # user, bot
    content: str
    metadata: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    id: Optional[str] = None


@dataclass(frozen=True)
class ResourceRecord:
    id: str
    name: str
    link: str


@dataclass(frozen=True)
class TenantRecord:
    id: str
    platform_experience_id: str
    platform_company_id: str
    name: str


class ConversationStore(ABC):
    @abstractmethod
    def load(self, conversation_id: str, experience_id: str) -> Optional[ConversationRecord]: ...

    @abstractmethod
    def find_active(self, external_user_id: str, experience_id: str) -> list[ConversationRecord]: ...

    @abstractmethod
    def create(
        self,
        experience_id: str,
        funnel_id: str,
        external_user_id: str,
        start_block_id: str,
    ) -> ConversationRecord:
        """Create an active conversation positioned on start_block_id."""

    @abstractmethod
    def update_block_and_path(
        self,
        conversation_id: str,
        experience_id: str,
        block_id: Optional[str],
        append_to_path: Optional[str] = None,
        phase2_start_time: Optional[datetime] = None,
    ) -> ConversationRecord:
        """Move to block_id, appending to the path when given.

        phase2_start_time is only written when the stored value is unset.
        """

    @abstractmethod
    def update_status(self, conversation_id: str, experience_id: str, status: str) -> ConversationRecord: ...

    @abstractmethod
    def load_funnel(self, funnel_id: str, experience_id: str, deployed_only: bool = False) -> Optional[Any]:
        """Return the funnel's stored flow, or None if missing."""

    @abstractmethod
    def list_messages(self, conversation_id: str, experience_id: str) -> list[MessageRecord]: ...

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...


class MessageLog(ABC):
    @abstractmethod
    def append(self, conversation_id: str, role: str, content: str, metadata: Optional[dict] = None) -> str:
        """Append a message and return its id."""


class InteractionLog(ABC):
    @abstractmethod
    def append(
        self,
        conversation_id: str,
        block_id: str,
        option_text: str,
        next_block_id: Optional[str],
        metadata: Optional[dict] = None,
    ) -> None: ...


class ResourceCatalog(ABC):
    @abstractmethod
    def find_by_name_and_tenant(self, name: str, experience_id: str) -> Optional[ResourceRecord]: ...


class TenantDirectory(ABC):
    @abstractmethod
    def get_tenant(self, experience_id: str) -> Optional[TenantRecord]: ...
