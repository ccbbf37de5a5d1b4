import uuid

from sqlalchemy import Column, ForeignKey, Index, Text, text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from funnelchat.database import Base


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        Index(
            "uq_active_conversation_per_user",
            "experience_id",
            "external_user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    experience_id = Column(UUID(as_uuid=True), ForeignKey("experiences.id"), nullable=False, index=True)
    funnel_id = Column(UUID(as_uuid=True), ForeignKey("funnels.id"), nullable=False)
    external_user_id = Column(Text, nullable=False, index=True)
    status = Column(Text, nullable=False, default="active")  # active, closed, abandoned
    current_block_id = Column(Text)
    user_path = Column(JSONB, nullable=False, default=list)
    phase2_start_time = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)

    funnel = relationship("Funnel", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")
    interactions = relationship("FunnelInteraction", back_populates="conversation")
