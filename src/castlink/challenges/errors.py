from __future__ import annotations


class ChallengeError(Exception):
    """Base class for challenge engine failures."""


class ChallengesUnavailable(ChallengeError):
    """Raised when no challenge could be produced for a day."""

    def __init__(self, day: object) -> None:
        super().__init__(f"No daily challenges available for {day}")
        self.day = day


class ChallengeNotFound(ChallengeError):
    def __init__(self, challenge_id: str) -> None:
        super().__init__(f"Challenge {challenge_id} not found")
        self.challenge_id = challenge_id


class InvalidStatusTransition(ChallengeError):
    def __init__(self, current: object, target: object) -> None:
        super().__init__(f"Illegal challenge status transition {current} -> {target}")
        self.current = current
        self.target = target


class DuplicateChallenge(ChallengeError):
    """Raised when ``(date, tier)`` already has a record."""

    def __init__(self, day: object, tier: object) -> None:
        super().__init__(f"Challenge for {day} ({tier}) already exists")
        self.day = day
        self.tier = tier
