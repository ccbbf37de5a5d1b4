"""Funnel analytics counters: conversation starts (awareness) and interest.

Runs off the request path via run_in_background, so each call opens its own
session.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from funnelchat.database import SessionLocal
from funnelchat.logging_config import get_logger
from funnelchat.models import FunnelAnalytics

logger = get_logger("analytics_service")


class InterestTracker(ABC):
    @abstractmethod
    def record_start(self, experience_id: str, funnel_id: str) -> None: ...

    @abstractmethod
    def record_interest(self, experience_id: str, funnel_id: str) -> None: ...


def _get_or_create_analytics(db: Session, experience_id: UUID, funnel_id: UUID, now: datetime) -> FunnelAnalytics:
    row = (
        db.query(FunnelAnalytics)
        .filter(FunnelAnalytics.experience_id == experience_id, FunnelAnalytics.funnel_id == funnel_id)
        .with_for_update()
        .first()
    )
    if row is None:
        row = FunnelAnalytics(
            experience_id=experience_id,
            funnel_id=funnel_id,
            total_starts=0,
            today_starts=0,
            total_interest=0,
            today_interest=0,
            last_updated=now,
        )
        db.add(row)
        return row

    # Daily counters restart on the first event of a new (UTC) day.
    last_updated = row.last_updated
    if last_updated is not None and last_updated.tzinfo is None:
        last_updated = last_updated.replace(tzinfo=timezone.utc)
    if last_updated is None or last_updated.date() != now.date():
        row.today_starts = 0
        row.today_interest = 0
    return row


def increment_starts(db: Session, experience_id: UUID, funnel_id: UUID) -> FunnelAnalytics:
    now = datetime.now(timezone.utc)
    row = _get_or_create_analytics(db, experience_id, funnel_id, now)
    row.total_starts = (row.total_starts or 0) + 1
    row.today_starts = (row.today_starts or 0) + 1
    row.last_updated = now
    db.flush()
    return row


def increment_interest(db: Session, experience_id: UUID, funnel_id: UUID) -> FunnelAnalytics:
    now = datetime.now(timezone.utc)
    row = _get_or_create_analytics(db, experience_id, funnel_id, now)
    row.total_interest = (row.total_interest or 0) + 1
    row.today_interest = (row.today_interest or 0) + 1
    row.last_updated = now
    db.flush()
    return row


class SqlInterestTracker(InterestTracker):
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def _run(self, increment, experience_id: str, funnel_id: str) -> None:
        db = self.session_factory()
        try:
            increment(db, UUID(str(experience_id)), UUID(str(funnel_id)))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def record_start(self, experience_id: str, funnel_id: str) -> None:
        self._run(increment_starts, experience_id, funnel_id)
        logger.info("Funnel start recorded", extra={"context": {"experience_id": experience_id, "funnel_id": funnel_id}})

    def record_interest(self, experience_id: str, funnel_id: str) -> None:
        self._run(increment_interest, experience_id, funnel_id)
        logger.info(
            "Funnel interest recorded", extra={"context": {"experience_id": experience_id, "funnel_id": funnel_id}}
        )
