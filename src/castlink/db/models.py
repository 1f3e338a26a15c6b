from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

from ..challenges.models import ChallengeStatus, Tier, ensure_transition


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Declarative base class for application models."""


class DailyChallenge(Base):
    __tablename__ = "daily_challenges"
    __table_args__ = (
        UniqueConstraint("challenge_date", "tier", name="uq_daily_challenges_date_tier"),
        Index("ix_daily_challenges_status_tier", "status", "tier"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    challenge_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    tier: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    start_actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    start_actor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_actor_profile_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    end_actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    end_actor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    end_actor_profile_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    hints_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_hint_payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    end_hint_payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @validates("tier")
    def _validate_tier(self, _key: str, value: object) -> str:
        return Tier(value).value

    @validates("status")
    def _validate_status(self, _key: str, value: object) -> str:
        current = ChallengeStatus(self.status) if self.status else None
        return ensure_transition(current, ChallengeStatus(value)).value

    @property
    def actor_ids(self) -> List[int]:
        return [self.start_actor_id, self.end_actor_id]


class GameAttempt(Base):
    __tablename__ = "game_attempts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    challenge_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    moves: Mapped[int] = mapped_column(Integer, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    connections: Mapped[List[Dict[str, object]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
