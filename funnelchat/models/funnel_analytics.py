import uuid

from sqlalchemy import Column, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.sql import func

from funnelchat.database import Base


class FunnelAnalytics(Base):
    __tablename__ = "funnel_analytics"
    __table_args__ = (UniqueConstraint("experience_id", "funnel_id", name="uq_funnel_analytics_tenant_funnel"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    experience_id = Column(UUID(as_uuid=True), ForeignKey("experiences.id"), nullable=False, index=True)
    funnel_id = Column(UUID(as_uuid=True), ForeignKey("funnels.id"), nullable=False, index=True)
    total_starts = Column(Integer, nullable=False, default=0)
    today_starts = Column(Integer, nullable=False, default=0)
    total_interest = Column(Integer, nullable=False, default=0)
    today_interest = Column(Integer, nullable=False, default=0)
    last_updated = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
