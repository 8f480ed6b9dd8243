import copy
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, NamedTuple, Optional, Union

from .commitment import check_field_element
from .errors import InputOutOfRange


class CircuitKind(str, Enum):
    AGE = "age"
    VOTE = "vote"

    @property
    def circuit_name(self) -> str:
        # Names of the compiled circom circuits in the manifest
        return {"age": "ageVerification", "vote": "voteCommitment"}[self.value]


class ProofMode(str, Enum):
    CIRCUIT = "circuit"
    SIMULATION = "simulation"


class ReserveResult(str, Enum):
    OK = "ok"
    ALREADY_USED = "already_used"


class VerificationResult(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    INCONCLUSIVE = "inconclusive"


def _parse_signal(value) -> int:
    if isinstance(value, bool):
        raise InputOutOfRange("public signal must be numeric")
    if isinstance(value, str):
        text = value.strip()
        try:
            value = int(text, 0) if text.startswith("0x") else int(text)
        except ValueError as exc:
            raise InputOutOfRange(f"public signal {value!r} is not numeric") from exc
    return check_field_element(value)


def _parse_signals(signals, size: int) -> list[int]:
    if not isinstance(signals, (list, tuple)) or len(signals) != size:
        raise InputOutOfRange(f"expected {size} public signals")
    return [_parse_signal(s) for s in signals]


class AgePublicSignals(NamedTuple):
    """Canonical order: [minAge, commitment, isEligible]."""

    min_age: int
    commitment: int
    is_eligible: bool

    @classmethod
    def from_signals(cls, signals) -> "AgePublicSignals":
        min_age, commitment, flag = _parse_signals(signals, 3)
        if flag not in (0, 1):
            raise InputOutOfRange("isEligible signal must be 0 or 1")
        return cls(min_age, commitment, bool(flag))

    def to_signals(self) -> list[str]:
        return [str(self.min_age), str(self.commitment), "1" if self.is_eligible else "0"]


class VotePublicSignals(NamedTuple):
    """Canonical order: [pollId, commitment, nullifierHash]."""

    poll_id: int
    commitment: int
    nullifier_hash: int

    @classmethod
    def from_signals(cls, signals) -> "VotePublicSignals":
        return cls(*_parse_signals(signals, 3))

    def to_signals(self) -> list[str]:
        return [str(self.poll_id), str(self.commitment), str(self.nullifier_hash)]


PublicSignals = Union[AgePublicSignals, VotePublicSignals]

SIGNAL_TYPES = {
    CircuitKind.AGE: AgePublicSignals,
    CircuitKind.VOTE: VotePublicSignals,
}


def parse_public_signals(kind: CircuitKind, signals) -> PublicSignals:
    return SIGNAL_TYPES[CircuitKind(kind)].from_signals(signals)


@dataclass(frozen=True)
class EligibilityClaim:
    age: int
    secret: int
    min_age: int


@dataclass(frozen=True)
class VoteClaim:
    candidate_id: int
    voter_secret: int
    nullifier_seed: int
    poll_id: int


@dataclass(frozen=True)
class ProofArtifact:
    kind: CircuitKind
    proof: dict[str, Any]
    public_signals: PublicSignals
    mode: ProofMode
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        # detach from the dict the backend built
        object.__setattr__(self, "proof", copy.deepcopy(self.proof))

    def to_dict(self) -> dict:
        # callers get their own copy; the artifact's proof stays as generated
        return {
            "proof": copy.deepcopy(self.proof),
            "publicSignals": self.public_signals.to_signals(),
            "mode": self.mode.value,
            "timestamp": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class PollConfiguration:
    poll_id: int
    candidates: frozenset[int]
    min_age: int
    open: bool = True
    title: str = ""


class Deadline:
    """Monotonic deadline shared by every step of one request."""

    def __init__(self, timeout: Optional[float]):
        self.timeout = timeout
        self._expires = None if timeout is None else time.monotonic() + timeout

    def remaining(self) -> Optional[float]:
        if self._expires is None:
            return None
        return max(0.0, self._expires - time.monotonic())

    @property
    def expired(self) -> bool:
        return self._expires is not None and time.monotonic() >= self._expires
