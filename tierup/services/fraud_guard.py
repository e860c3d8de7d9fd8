"""
Fraud guard — admission control for votes.

Three independent checks, all must pass:

1. Account duplicate: the voter already voted for this participant.
2. IP duplicate (optional, ``BLOCK_SHARED_IP_DUPLICATES``): another vote for
   this participant already came from the same address.
3. IP velocity: accepted votes from the address inside a rolling window
   must stay below the ceiling (default 10 per 60 s).

1 and 2 come from one combined query; the most specific reason wins.

The guard never writes.  Velocity is read from a counter maintained
elsewhere: either the vote ledger itself (``LedgerVelocityCounter``) or a
process-wide sliding window fed after each committed vote
(``SlidingWindowCounter``).
"""
from __future__ import annotations

import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Deque, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from tierup.config import settings
from tierup.errors import DuplicateVoteError, EngineError, RateLimitExceededError
from tierup.services import vote_ledger

# (voter_ip, voter_user_id or None when the window is keyed by address only)
VelocityKey = Tuple[str, Optional[int]]


@dataclass(frozen=True)
class Decision:
    allowed: bool
    error:   Optional[EngineError] = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, error: EngineError) -> "Decision":
        return cls(allowed=False, error=error)


class LedgerVelocityCounter:
    """Counts accepted Vote rows; the ledger is the event stream."""

    async def count(
        self,
        session: AsyncSession,
        key: VelocityKey,
        since: datetime,
    ) -> int:
        ip, user_id = key
        return await vote_ledger.count_recent(session, ip, since, voter_user_id=user_id)

    def record(self, key: VelocityKey, at: datetime) -> None:
        # The committed Vote row already is the event
        return None

    def sweep(self, now: datetime) -> int:
        return 0


class SlidingWindowCounter:
    """
    Process-wide sliding window of accepted-vote timestamps per key.

    Parameters
    ----------
    period : window size in seconds
    """

    def __init__(self, period: float = 60.0) -> None:
        self._period = timedelta(seconds=period)
        # key → deque of timestamps (most recent first)
        self._history: Dict[VelocityKey, Deque[datetime]] = defaultdict(deque)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._history)

    async def count(
        self,
        session: AsyncSession,
        key: VelocityKey,
        since: datetime,
    ) -> int:
        with self._lock:
            window = self._history.get(key)
            if not window:
                return 0
            return sum(1 for ts in window if ts > since)

    def record(self, key: VelocityKey, at: datetime) -> None:
        with self._lock:
            window = self._history[key]
            window.appendleft(at)
            # Evict timestamps outside the window, relative to the newest event
            while window and at - window[-1] >= self._period:
                window.pop()

    def sweep(self, now: datetime) -> int:
        """Drop keys whose newest event has left the window.  Returns keys removed."""
        cutoff = now - self._period
        with self._lock:
            stale = [k for k, w in self._history.items() if not w or w[0] <= cutoff]
            for k in stale:
                del self._history[k]
        return len(stale)


def build_counter(backend: Optional[str] = None):
    backend = backend or settings.VELOCITY_BACKEND
    if backend == "memory":
        return SlidingWindowCounter(settings.VOTE_RATE_WINDOW_SECONDS)
    return LedgerVelocityCounter()


class FraudGuard:
    """
    Stateless admission decision for a single vote request.

    Parameters
    ----------
    counter         : LedgerVelocityCounter | SlidingWindowCounter
    rate            : maximum accepted votes per key inside the window
    period          : window size in seconds
    scope           : "ip" or "ip_user"
    block_shared_ip : deny a second vote for a participant from the same address
    """

    def __init__(
        self,
        counter=None,
        rate: Optional[int] = None,
        period: Optional[float] = None,
        scope: Optional[str] = None,
        block_shared_ip: Optional[bool] = None,
    ) -> None:
        self.counter = counter if counter is not None else build_counter()
        self.rate    = rate if rate is not None else settings.VOTE_RATE_LIMIT
        self.period  = timedelta(
            seconds=period if period is not None else settings.VOTE_RATE_WINDOW_SECONDS
        )
        self.scope   = scope or settings.VOTE_RATE_SCOPE
        self.block_shared_ip = (
            block_shared_ip if block_shared_ip is not None
            else settings.BLOCK_SHARED_IP_DUPLICATES
        )

    def window_key(self, voter_ip: str, voter_user_id: int) -> VelocityKey:
        if self.scope == "ip_user":
            return (voter_ip, voter_user_id)
        return (voter_ip, None)

    async def admit(
        self,
        session: AsyncSession,
        competition_id: int,
        participant_id: int,
        voter_user_id: int,
        voter_ip: str,
        now: datetime,
    ) -> Decision:
        account_dup, ip_dup = await vote_ledger.duplicate_flags(
            session, participant_id, voter_user_id, voter_ip
        )
        if account_dup:
            return Decision.deny(DuplicateVoteError("account_duplicate"))
        if ip_dup and self.block_shared_ip:
            return Decision.deny(DuplicateVoteError(
                "ip_duplicate",
                "A vote for this participant was already cast from your network.",
            ))

        key = self.window_key(voter_ip, voter_user_id)
        recent = await self.counter.count(session, key, since=now - self.period)
        if recent >= self.rate:
            return Decision.deny(RateLimitExceededError(
                "ip_velocity",
                details={
                    "limit": self.rate,
                    "window_seconds": int(self.period.total_seconds()),
                },
            ))
        return Decision.allow()

    def observe(self, voter_ip: str, voter_user_id: int, cast_at: datetime) -> None:
        """Feed a committed vote into the velocity counter."""
        self.counter.record(self.window_key(voter_ip, voter_user_id), cast_at)

    def sweep(self, now: datetime) -> int:
        return self.counter.sweep(now)
