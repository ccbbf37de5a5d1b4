import uuid

from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from funnelchat.database import Base


class FunnelInteraction(Base):
    __tablename__ = "funnel_interactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(UUID(as_uuid=True), ForeignKey("conversations.id"), nullable=False, index=True)
    block_id = Column(Text, nullable=False, index=True)
    option_text = Column(Text, nullable=False)
    next_block_id = Column(Text)  # NULL for terminal options
    interaction_metadata = Column("metadata", JSONB, nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)

    conversation = relationship("Conversation", back_populates="interactions")
