"""
Consensus Verification Module - crowd verification of observations.

No moderators: an observation becomes verified once enough trusted, distinct
voters confirm it. Each accepted vote is stored as an immutable fact and the
trust score is always derived by folding over the facts, never kept as a
running counter.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from zone_engine.models import Observation, Vote, VoteChoice
from zone_engine.settings import ConsensusSettings

log = logging.getLogger(__name__)

CONSENSUS_REASON = "consensus_verification_trigger"
VOTE_REASON = "comment_verification"


class VoteStatus(Enum):
    """Outcome of a vote attempt."""
    ACCEPTED = "accepted"
    INSUFFICIENT_CLEARANCE = "insufficient_clearance"
    DUPLICATE_VOTE = "duplicate_vote"
    NOT_FOUND = "not_found"


VOTE_MESSAGES = {
    VoteStatus.INSUFFICIENT_CLEARANCE: "ACCESS DENIED // INSUFFICIENT CLEARANCE",
    VoteStatus.DUPLICATE_VOTE: "DUPLICATE VOTE // ALREADY RECORDED",
    VoteStatus.NOT_FOUND: "OBSERVATION NOT FOUND",
}
CONSENSUS_MESSAGE = "CONSENSUS ACHIEVED // INTEL AUTO-VERIFIED"
RECORDED_MESSAGE = "VERIFICATION RECORDED // INTEL VALIDATED"


def voter_level(karma: int, karma_per_level: int = 200) -> int:
    return int(karma) // karma_per_level + 1


def vote_weight(vote: Vote, settings: Optional[ConsensusSettings] = None) -> float:
    """Signed vote weight: +/-1 scaled by karma, capped at max_vote_weight."""
    settings = settings or ConsensusSettings()
    direction = 1.0 if vote.choice == VoteChoice.ACCURATE else -1.0
    multiplier = min(1 + max(0, vote.voter_karma) / settings.karma_weight_divisor, settings.max_vote_weight)
    return direction * multiplier


# ═══════════════════════════════════════════════════════════════════════════
# FOLDING
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class VoteFact:
    """An accepted vote. Never edited once recorded."""
    vote: Vote
    weight: float
    sequence: int
    cast_at: Optional[datetime] = None


@dataclass
class ConsensusState:
    trust_score: float
    accurate_voters: int
    verified: bool
    auto_verified: bool
    consensus_sequence: Optional[int] = None  # fact that triggered auto-verification
    verified_sequence: Optional[int] = None   # fact that first made it verified

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trust_score": self.trust_score,
            "accurate_voters": self.accurate_voters,
            "verified": self.verified,
            "auto_verified": self.auto_verified,
        }


def fold_votes(
    initial_trust: float,
    facts: Iterable[VoteFact],
    settings: Optional[ConsensusSettings] = None,
) -> ConsensusState:
    """
    Derive trust and verification state from the vote facts.

    Verification is sticky: once any prefix of the facts verified the
    observation, later inaccurate votes lower trust but don't unverify it.
    """
    settings = settings or ConsensusSettings()
    total_weight = 0.0
    accurate: Set[str] = set()
    trust = max(0.0, initial_trust)
    consensus_seq = None
    verified_seq = None

    for fact in sorted(facts, key=lambda f: f.sequence):
        total_weight += fact.weight
        if fact.vote.choice == VoteChoice.ACCURATE:
            accurate.add(fact.vote.voter_id)

        trust = max(0.0, initial_trust + total_weight * settings.trust_per_weight)
        if consensus_seq is None and len(accurate) >= settings.auto_verify_voters:
            consensus_seq = fact.sequence
        if verified_seq is None and (consensus_seq is not None or trust > settings.trust_verify_threshold):
            verified_seq = fact.sequence

    return ConsensusState(
        trust_score=trust,
        accurate_voters=len(accurate),
        verified=verified_seq is not None,
        auto_verified=consensus_seq is not None,
        consensus_sequence=consensus_seq,
        verified_sequence=verified_seq,
    )


# ═══════════════════════════════════════════════════════════════════════════
# LEDGER
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class VoteResult:
    """Result of VoteLedger.cast_vote(). Rejections are results, not errors."""
    status: VoteStatus
    observation_id: str
    voter_id: str
    message: str
    weight: float = 0.0
    trust_score: Optional[float] = None
    verified: bool = False
    auto_verified: bool = False
    accurate_voters: int = 0
    karma_reward: int = 0
    karma_reason: Optional[str] = None
    voter_level: Optional[int] = None

    @property
    def accepted(self) -> bool:
        return self.status == VoteStatus.ACCEPTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "observation_id": self.observation_id,
            "voter_id": self.voter_id,
            "message": self.message,
            "weight": self.weight,
            "trust_score": round(self.trust_score) if self.trust_score is not None else None,
            "verified": self.verified,
            "auto_verified": self.auto_verified,
            "consensus_votes": self.accurate_voters,
            "karma_awarded": self.karma_reward,
        }


@dataclass
class _ObservationRecord:
    observation: Observation
    initial_trust: float
    facts: List[VoteFact] = field(default_factory=list)
    voters: Set[str] = field(default_factory=set)
    lock: threading.Lock = field(default_factory=threading.Lock)


class VoteLedger:
    """
    Append-only vote store with per-observation serialization.

    Concurrent votes on one observation are applied one at a time, so the
    duplicate check and the consensus trigger can't race.
    """

    def __init__(
        self,
        settings: Optional[ConsensusSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or ConsensusSettings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self._records: Dict[str, _ObservationRecord] = {}

    def add_observation(self, observation: Observation) -> None:
        with self._lock:
            if observation.id in self._records:
                raise ValueError(f"Observation {observation.id} already exists")
            self._records[observation.id] = _ObservationRecord(
                observation=replace(observation),
                initial_trust=observation.trust_score,
            )

    def get_observation(self, observation_id: str) -> Optional[Observation]:
        with self._lock:
            record = self._records.get(observation_id)
        if record is None:
            return None
        with record.lock:
            return replace(record.observation)

    def votes_for(self, observation_id: str) -> List[VoteFact]:
        with self._lock:
            record = self._records.get(observation_id)
        if record is None:
            return []
        with record.lock:
            return list(record.facts)

    def tally(self, observation_id: str) -> ConsensusState:
        with self._lock:
            record = self._records.get(observation_id)
        if record is None:
            raise ValueError(f"Observation {observation_id} not found")
        with record.lock:
            return fold_votes(record.initial_trust, record.facts, self.settings)

    def _reject(self, vote: Vote, status: VoteStatus, level: Optional[int] = None) -> VoteResult:
        log.info(f"Vote by {vote.voter_id} on {vote.observation_id} rejected: {status.value}")
        return VoteResult(
            status=status,
            observation_id=vote.observation_id,
            voter_id=vote.voter_id,
            message=VOTE_MESSAGES[status],
            voter_level=level,
        )

    def cast_vote(self, vote: Vote) -> VoteResult:
        """Record a vote and recompute the observation's trust."""
        settings = self.settings

        with self._lock:
            record = self._records.get(vote.observation_id)
        if record is None:
            return self._reject(vote, VoteStatus.NOT_FOUND)

        level = voter_level(vote.voter_karma, settings.karma_per_level)
        if level < settings.min_voter_level:
            return self._reject(vote, VoteStatus.INSUFFICIENT_CLEARANCE, level)

        with record.lock:
            if vote.voter_id in record.voters:
                return self._reject(vote, VoteStatus.DUPLICATE_VOTE, level)

            now = self._clock()
            fact = VoteFact(
                vote=vote,
                weight=vote_weight(vote, settings),
                sequence=len(record.facts),
                cast_at=now,
            )
            record.facts.append(fact)
            record.voters.add(vote.voter_id)

            state = fold_votes(record.initial_trust, record.facts, settings)
            obs = record.observation
            obs.trust_score = state.trust_score
            if state.verified and not obs.verified:
                obs.verified = True
                obs.verified_at = now

            triggered = state.consensus_sequence == fact.sequence
            if triggered:
                log.info(
                    f"Consensus reached on {obs.id}: {state.accurate_voters} distinct accurate voters"
                )

            return VoteResult(
                status=VoteStatus.ACCEPTED,
                observation_id=obs.id,
                voter_id=vote.voter_id,
                message=CONSENSUS_MESSAGE if state.auto_verified else RECORDED_MESSAGE,
                weight=fact.weight,
                trust_score=state.trust_score,
                verified=obs.verified,
                auto_verified=state.auto_verified,
                accurate_voters=state.accurate_voters,
                karma_reward=settings.consensus_karma_reward if triggered else settings.vote_karma_reward,
                karma_reason=CONSENSUS_REASON if triggered else VOTE_REASON,
                voter_level=level,
            )


def get_vote_ledger(settings: Optional[ConsensusSettings] = None) -> VoteLedger:
    """Factory function for a vote ledger."""
    return VoteLedger(settings=settings)
