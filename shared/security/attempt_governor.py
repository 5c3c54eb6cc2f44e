"""
Brute-force protection for PIN verification.

Per-origin sliding window over one hour:
- 3 failed lookups -> a verified challenge token is required
- 10 attempts -> locked out until the oldest attempt leaves the window

Lockout is attempt based, challenge escalation is failure based. The ledger
sits behind AttemptLedger so a shared TTL store can replace the in-process map
when the service runs on more than one instance.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from time import time
from typing import Callable, Dict, List, Optional

from shared.services.challenge import ChallengeVerifier


logger = logging.getLogger(__name__)

UNKNOWN_ORIGIN = "unknown"


class AttemptStatus(str, Enum):
    """Governor outcome."""
    ALLOWED = "allowed"
    CHALLENGE_REQUIRED = "challenge_required"
    LOCKED_OUT = "locked_out"


@dataclass(frozen=True)
class GovernorDecision:
    status: AttemptStatus
    minutes_left: int = 0

    @property
    def allowed(self) -> bool:
        return self.status == AttemptStatus.ALLOWED


class AttemptLedger(ABC):
    """Storage for attempt and failure timestamps per origin."""

    @abstractmethod
    def attempts(self, origin: str, since: float) -> List[float]:
        """Attempt timestamps newer than `since`, oldest first."""

    @abstractmethod
    def failures(self, origin: str, since: float) -> List[float]:
        """Failure timestamps newer than `since`, oldest first."""

    @abstractmethod
    def add_attempt(self, origin: str, at: float) -> None:
        ...

    @abstractmethod
    def add_failure(self, origin: str, at: float) -> None:
        ...

    @abstractmethod
    def reset(self) -> None:
        ...


@dataclass
class _OriginEntries:
    attempts: List[float] = field(default_factory=list)
    failures: List[float] = field(default_factory=list)


class InMemoryAttemptLedger(AttemptLedger):
    """
    Process-local ledger.

    Entries are pruned lazily whenever an origin is read; origins whose lists
    become empty are dropped so the map does not grow without bound.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, _OriginEntries] = {}

    def _prune(self, origin: str, since: float) -> Optional[_OriginEntries]:
        entry = self._entries.get(origin)
        if entry is None:
            return None
        entry.attempts = [t for t in entry.attempts if t > since]
        entry.failures = [t for t in entry.failures if t > since]
        if not entry.attempts and not entry.failures:
            del self._entries[origin]
            return None
        return entry

    def attempts(self, origin: str, since: float) -> List[float]:
        entry = self._prune(origin, since)
        return list(entry.attempts) if entry else []

    def failures(self, origin: str, since: float) -> List[float]:
        entry = self._prune(origin, since)
        return list(entry.failures) if entry else []

    def add_attempt(self, origin: str, at: float) -> None:
        self._entries.setdefault(origin, _OriginEntries()).attempts.append(at)

    def add_failure(self, origin: str, at: float) -> None:
        self._entries.setdefault(origin, _OriginEntries()).failures.append(at)

    def reset(self) -> None:
        """Reset all states (for testing)"""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class AttemptGovernor:
    """
    Decides whether a PIN verification may proceed for an origin.

    Usage:
        decision = await governor.check_and_record(client_ip, challenge_token)
        if not decision.allowed:
            ...  # surface challenge / lockout to the caller
        ...
        governor.record_failure(client_ip)  # when no bucket matched
    """

    def __init__(
        self,
        challenge_verifier: ChallengeVerifier,
        ledger: Optional[AttemptLedger] = None,
        challenge_threshold: int = 3,
        lockout_threshold: int = 10,
        window_seconds: int = 3600,
        clock: Callable[[], float] = time
    ):
        if challenge_threshold < 1 or lockout_threshold < 1 or window_seconds < 1:
            raise ValueError("Governor thresholds and window must be positive")

        self.challenge_verifier = challenge_verifier
        self.ledger = ledger or InMemoryAttemptLedger()
        self.challenge_threshold = challenge_threshold
        self.lockout_threshold = lockout_threshold
        self.window_seconds = window_seconds
        self._clock = clock

    @classmethod
    def from_config(cls, config_manager, challenge_verifier: ChallengeVerifier) -> 'AttemptGovernor':
        return cls(
            challenge_verifier=challenge_verifier,
            challenge_threshold=config_manager.pin_attempts_before_challenge,
            lockout_threshold=config_manager.pin_attempts_before_lockout,
            window_seconds=config_manager.pin_attempt_window_seconds,
        )

    @staticmethod
    def _key(origin: Optional[str]) -> str:
        return origin or UNKNOWN_ORIGIN

    def _lockout_minutes(self, attempts: List[float], now: float) -> int:
        remaining = attempts[0] + self.window_seconds - now
        return max(1, math.ceil(remaining / 60))

    def status(self, origin: Optional[str]) -> GovernorDecision:
        """Current state for an origin without recording anything."""
        key = self._key(origin)
        now = self._clock()
        since = now - self.window_seconds

        attempts = self.ledger.attempts(key, since)
        if len(attempts) >= self.lockout_threshold:
            return GovernorDecision(AttemptStatus.LOCKED_OUT, self._lockout_minutes(attempts, now))

        if len(self.ledger.failures(key, since)) >= self.challenge_threshold:
            return GovernorDecision(AttemptStatus.CHALLENGE_REQUIRED)

        return GovernorDecision(AttemptStatus.ALLOWED)

    async def check(
        self,
        origin: Optional[str],
        challenge_token: Optional[str] = None
    ) -> GovernorDecision:
        """
        Gate one verification call without recording it.

        A challenge-required origin is allowed only with a token the
        challenge verifier accepts.
        """
        key = self._key(origin)
        decision = self.status(key)

        if decision.status == AttemptStatus.LOCKED_OUT:
            logger.warning(f"PIN verification locked out for {key} ({decision.minutes_left} min left)")
            return decision

        if decision.status == AttemptStatus.CHALLENGE_REQUIRED:
            if not challenge_token:
                return decision
            if not await self.challenge_verifier.verify(challenge_token, remote_ip=key):
                logger.warning(f"Challenge verification failed for {key}")
                return decision

        return GovernorDecision(AttemptStatus.ALLOWED)

    async def check_and_record(
        self,
        origin: Optional[str],
        challenge_token: Optional[str] = None
    ) -> GovernorDecision:
        """
        Gate one verification call.

        An ALLOWED decision consumes one attempt. Challenge and lockout
        decisions consume nothing.
        """
        decision = await self.check(origin, challenge_token)
        if decision.allowed:
            self.ledger.add_attempt(self._key(origin), self._clock())
        return decision

    def record_failure(self, origin: Optional[str], consume_attempt: bool = False) -> None:
        """
        Record a verification that matched no bucket.

        `consume_attempt` also charges an attempt, for checks that did not go
        through check_and_record first.
        """
        key = self._key(origin)
        if consume_attempt:
            self.ledger.add_attempt(key, self._clock())
        self.ledger.add_failure(key, self._clock())
        failures = len(self.ledger.failures(key, self._clock() - self.window_seconds))
        if failures == self.challenge_threshold:
            logger.info(f"Challenge now required for {key} ({failures} failed PIN lookups)")
