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
from funnelchat.services.storage.sql_store import SqlFunnelStore, SqlInteractionLog, SqlMessageLog

__all__ = [
    "ConversationRecord",
    "ConversationStore",
    "InteractionLog",
    "MessageLog",
    "MessageRecord",
    "ResourceCatalog",
    "ResourceRecord",
    "TenantDirectory",
    "TenantRecord",
    "SqlFunnelStore",
    "SqlInteractionLog",
    "SqlMessageLog",
]
