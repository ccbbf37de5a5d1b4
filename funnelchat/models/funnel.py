import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from funnelchat.database import Base


class Funnel(Base):
    __tablename__ = "funnels"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    experience_id = Column(UUID(as_uuid=True), ForeignKey("experiences.id"), nullable=False)
    name = Column(Text, nullable=False)
    flow = Column(JSONB)  # {"startBlockId", "stages": [...], "blocks": {...}}
    is_deployed = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)

    experience = relationship("Experience", back_populates="funnels")
    conversations = relationship("Conversation", back_populates="funnel")
