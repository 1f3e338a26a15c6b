from __future__ import annotations

import hmac
import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..challenges.errors import ChallengeNotFound, ChallengesUnavailable
from ..challenges.lifecycle import ChallengeLifecycleManager
from ..challenges.models import (
    MAX_CHAIN_LENGTH,
    ChallengeAnalytics,
    ChallengeRecord,
    Connection,
    HintResult,
    HintSide,
    HintSummary,
    RolloverSummary,
    Tier,
    ValidationResult,
)
from ..challenges.validator import CHAIN_ERROR_MESSAGE, ChainValidator
from ..core.config import settings
from ..core.database import get_session_factory
from ..core.dates import business_day, parse_day, shift_day
from ..services.attempts import challenge_analytics, record_attempt
from ..services.oracle import OracleError
from ..services.tmdb import TmdbOracle

logger = logging.getLogger(__name__)

router = APIRouter()

_oracle: Optional[TmdbOracle] = None
_manager: Optional[ChallengeLifecycleManager] = None


def get_oracle() -> TmdbOracle:
    global _oracle
    if _oracle is None:
        _oracle = TmdbOracle()
    return _oracle


def get_lifecycle_manager() -> ChallengeLifecycleManager:
    global _manager
    if _manager is None:
        _manager = ChallengeLifecycleManager(get_session_factory(), get_oracle())
    return _manager


class DailyChallengesResponse(BaseModel):
    date: date
    challenges: List[ChallengeRecord]


class ChainValidationPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    challenge_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("challengeId", "challenge_id")
    )
    start_actor_id: int = Field(validation_alias=AliasChoices("startActorId", "start_actor_id"))
    end_actor_id: int = Field(validation_alias=AliasChoices("endActorId", "end_actor_id"))
    connections: List[Connection] = Field(default_factory=list)


class LinkValidationPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    actor_id: int = Field(validation_alias=AliasChoices("actorId", "actor_id"))
    movie_id: int = Field(validation_alias=AliasChoices("movieId", "movie_id"))
    previous_actor_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("previousActorId", "previous_actor_id")
    )


class HintRequestPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    side: HintSide = Field(validation_alias=AliasChoices("actorType", "side"))


def _resolve_day(value: Optional[str]) -> date:
    if not value:
        return business_day()
    try:
        return parse_day(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date format. Use YYYY-MM-DD.") from exc


def _parse_tier(value: str) -> Tier:
    try:
        return Tier(value.lower())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown tier '{value}'") from exc


def _require_cron_secret(request: Request) -> None:
    secret = settings.cron_secret
    if not secret:
        raise HTTPException(status_code=503, detail="Scheduled maintenance is not configured")
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), secret):
        raise HTTPException(status_code=401, detail="Invalid maintenance credentials")


@router.get("/daily", response_model=DailyChallengesResponse)
async def get_daily_challenges(d: Optional[str] = Query(default=None)) -> DailyChallengesResponse:
    day = _resolve_day(d)
    manager = get_lifecycle_manager()
    try:
        records = await manager.ensure_daily_challenges(day)
    except ChallengesUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return DailyChallengesResponse(date=day, challenges=records)


@router.post("/daily/regenerate", response_model=DailyChallengesResponse)
async def regenerate_daily_challenges(
    request: Request, d: Optional[str] = Query(default=None)
) -> DailyChallengesResponse:
    _require_cron_secret(request)
    day = _resolve_day(d)
    manager = get_lifecycle_manager()
    try:
        records = await manager.force_regenerate(day)
    except ChallengesUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return DailyChallengesResponse(date=day, challenges=records)


@router.post("/daily/{tier}/regenerate", response_model=DailyChallengesResponse)
async def regenerate_tier_challenge(
    request: Request, tier: str, d: Optional[str] = Query(default=None)
) -> DailyChallengesResponse:
    _require_cron_secret(request)
    day = _resolve_day(d)
    manager = get_lifecycle_manager()
    records = await manager.regenerate_tier(day, _parse_tier(tier))
    return DailyChallengesResponse(date=day, challenges=records)


@router.post("/rollover", response_model=RolloverSummary)
async def rollover(request: Request) -> RolloverSummary:
    _require_cron_secret(request)
    today = business_day()
    return await get_lifecycle_manager().promote_next_to_active(today, shift_day(today, 1))


@router.get("/{challenge_id}/hints", response_model=HintSummary)
async def get_hints(challenge_id: str) -> HintSummary:
    try:
        return await get_lifecycle_manager().get_hints(challenge_id)
    except ChallengeNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post("/{challenge_id}/hints", response_model=HintResult)
async def use_hint(challenge_id: str, payload: HintRequestPayload) -> HintResult:
    try:
        return await get_lifecycle_manager().record_hint(challenge_id, payload.side)
    except ChallengeNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except OracleError as exc:
        logger.warning("Failed to load hint movies for %s: %s", challenge_id, exc)
        raise HTTPException(status_code=502, detail="Unable to load hints right now") from exc


@router.post("/validate", response_model=ValidationResult)
async def validate_chain(payload: ChainValidationPayload) -> ValidationResult:
    validator = ChainValidator(get_oracle())
    result = await validator.validate(
        payload.start_actor_id, payload.end_actor_id, payload.connections
    )

    checked = 0 < len(payload.connections) <= MAX_CHAIN_LENGTH
    if payload.challenge_id and checked and result.message != CHAIN_ERROR_MESSAGE:
        session_factory = get_session_factory()
        async with session_factory() as session:
            try:
                await record_attempt(
                    session,
                    payload.challenge_id,
                    payload.connections,
                    completed=bool(result.completed),
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    return result


@router.post("/validate-link", response_model=ValidationResult)
async def validate_link(payload: LinkValidationPayload) -> ValidationResult:
    validator = ChainValidator(get_oracle())
    return await validator.validate_link(
        payload.actor_id, payload.movie_id, payload.previous_actor_id
    )


@router.get("/{challenge_id}/analytics", response_model=ChallengeAnalytics)
async def get_analytics(challenge_id: str) -> ChallengeAnalytics:
    try:
        await get_lifecycle_manager().get_challenge(challenge_id)
    except ChallengeNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    session_factory = get_session_factory()
    async with session_factory() as session:
        return await challenge_analytics(session, challenge_id)
