import uuid

from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from funnelchat.database import Base


class Experience(Base):
    __tablename__ = "experiences"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    platform_experience_id = Column(Text, nullable=False, unique=True)  # exp_...
    platform_company_id = Column(Text, nullable=False)  # biz_...
    name = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)

    funnels = relationship("Funnel", back_populates="experience")
    resources = relationship("Resource", back_populates="experience")
