from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, List, Optional, Sequence

from ..services.oracle import ActorMovieOracle
from .models import MAX_CHAIN_LENGTH, Connection, ValidationResult

logger = logging.getLogger(__name__)

CHAIN_ERROR_MESSAGE = "Unable to validate the connection chain. Please try again."
LINK_ERROR_MESSAGE = "Unable to validate connection. Please try again."


class ChainValidator:
    """Checks a submitted chain of (actor, movie) connections.

    Every link is checked against the oracle at once; failures are then
    reported in a fixed order so the same chain always yields the same
    message: the start actor, each connection in turn (its own movie before
    the next one), then the end actor.
    """

    def __init__(self, oracle: ActorMovieOracle) -> None:
        self._oracle = oracle

    async def validate(
        self,
        start_actor_id: int,
        end_actor_id: int,
        connections: Sequence[Connection],
    ) -> ValidationResult:
        if not connections:
            return ValidationResult(valid=False, message="No connections provided.")
        if len(connections) > MAX_CHAIN_LENGTH:
            return ValidationResult(
                valid=False,
                message=f"Too many connections. Maximum is {MAX_CHAIN_LENGTH} moves.",
            )

        count = len(connections)
        checks: List[Awaitable[bool]] = [
            self._oracle.actor_appears_in_movie(start_actor_id, connections[0].movie_id),
            self._oracle.actor_appears_in_movie(end_actor_id, connections[-1].movie_id),
        ]
        checks.extend(
            self._oracle.actor_appears_in_movie(connection.actor_id, connection.movie_id)
            for connection in connections
        )
        checks.extend(
            self._oracle.actor_appears_in_movie(connections[i].actor_id, connections[i + 1].movie_id)
            for i in range(count - 1)
        )

        results = await asyncio.gather(*checks, return_exceptions=True)
        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            logger.warning("Chain validation aborted by oracle failure: %s", errors[0])
            return ValidationResult(valid=False, message=CHAIN_ERROR_MESSAGE)

        start_ok, end_ok = results[0], results[1]
        internal = results[2 : 2 + count]
        continuity = results[2 + count :]

        if not start_ok:
            return ValidationResult(
                valid=False, message="The starting actor did not appear in the first movie."
            )
        for i, connection in enumerate(connections):
            if not internal[i]:
                return ValidationResult(
                    valid=False,
                    message=(
                        f"Connection {i + 1}: {connection.actor_name} did not appear in "
                        f"{connection.movie_title}."
                    ),
                )
            if i < count - 1 and not continuity[i]:
                return ValidationResult(
                    valid=False,
                    message=(
                        f"Connection {i + 1}: {connection.actor_name} did not appear in the "
                        f"next movie {connections[i + 1].movie_title}."
                    ),
                )
        if not end_ok:
            return ValidationResult(
                valid=False, message="The ending actor did not appear in the final movie."
            )

        return ValidationResult(
            valid=True,
            completed=True,
            moves=count,
            message=f"Congratulations! You've successfully connected the actors in {count} moves!",
        )

    async def validate_link(
        self,
        actor_id: int,
        movie_id: int,
        previous_actor_id: Optional[int] = None,
    ) -> ValidationResult:
        """Check one link while a chain is still being built."""

        try:
            if not await self._oracle.actor_appears_in_movie(actor_id, movie_id):
                return ValidationResult(
                    valid=False, message="This actor did not appear in the specified movie."
                )
            if previous_actor_id and not await self._oracle.actor_appears_in_movie(
                previous_actor_id, movie_id
            ):
                return ValidationResult(
                    valid=False, message="The previous actor did not appear in this movie."
                )
        except Exception as exc:
            logger.warning("Link validation for actor %s failed: %s", actor_id, exc)
            return ValidationResult(valid=False, message=LINK_ERROR_MESSAGE)
        return ValidationResult(valid=True, message="Valid connection!")
