"""Proof request lifecycle.

Every request walks ``RECEIVED -> VALIDATED -> BACKEND_SELECTED -> PROVING``
and ends in exactly one of ``FINALIZED`` or ``REJECTED``. Terminal states are
final: a processed request cannot be driven again.

For votes the nullifier is reserved only after the proof exists, and the
reservation and the audit record of the artifact are committed in the same
transaction, so a reserved nullifier always has a finalized artifact behind it.
"""
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from . import commitment
from .backends import CircuitBackend, ProofBackend, SimulationBackend, select_backend
from .config import DEFAULT_MIN_AGE, PROOF_TIMEOUT
from .db import ProofAudit, SessionLocal
from .errors import (
    BackendUnavailable,
    CircuitNotProvisioned,
    IllegalTransition,
    InvalidInput,
    ProofGenerationFailed,
)
from .metrics import BACKEND_FALLBACKS, PROOFS_FINALIZED, REQUESTS_REJECTED
from .models import (
    CircuitKind,
    Deadline,
    EligibilityClaim,
    ProofArtifact,
    ProofMode,
    ReserveResult,
    VoteClaim,
)
from .polls import PollBook
from .registry import NullifierRegistry

logger = logging.getLogger(__name__)

MAX_AGE = 150


class RequestState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    BACKEND_SELECTED = "backend_selected"
    PROVING = "proving"
    FINALIZED = "finalized"
    REJECTED = "rejected"


class RejectionReason(str, Enum):
    INVALID_INPUT = "invalid_input"
    DUPLICATE_VOTE = "duplicate_vote"
    PROOF_GENERATION_FAILED = "proof_generation_failed"


TERMINAL_STATES = frozenset({RequestState.FINALIZED, RequestState.REJECTED})

TRANSITIONS = {
    RequestState.RECEIVED: {RequestState.VALIDATED, RequestState.REJECTED},
    RequestState.VALIDATED: {RequestState.BACKEND_SELECTED},
    RequestState.BACKEND_SELECTED: {RequestState.PROVING},
    # back to BACKEND_SELECTED when the circuit prover disappears mid-request
    RequestState.PROVING: {RequestState.FINALIZED, RequestState.REJECTED, RequestState.BACKEND_SELECTED},
}


@dataclass
class ProofRequest:
    kind: CircuitKind
    payload: dict
    timeout: Optional[float] = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: RequestState = RequestState.RECEIVED
    history: list = field(default_factory=lambda: [RequestState.RECEIVED])
    claim: Optional[Union[EligibilityClaim, VoteClaim]] = None
    mode: Optional[ProofMode] = None
    artifact: Optional[ProofArtifact] = None
    reason: Optional[RejectionReason] = None
    detail: str = ""

    @classmethod
    def age(cls, age, secret, min_age=None, timeout: Optional[float] = None) -> "ProofRequest":
        return cls(CircuitKind.AGE, {"age": age, "secret": secret, "minAge": min_age}, timeout)

    @classmethod
    def vote(cls, candidate_id, voter_secret, nullifier_seed, poll_id, timeout: Optional[float] = None) -> "ProofRequest":
        payload = {
            "candidateId": candidate_id,
            "voterSecret": voter_secret,
            "nullifierSeed": nullifier_seed,
            "pollId": poll_id,
        }
        return cls(CircuitKind.VOTE, payload, timeout)

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def retryable(self) -> bool:
        return self.reason == RejectionReason.PROOF_GENERATION_FAILED

    def transition(self, new: RequestState) -> None:
        if new not in TRANSITIONS.get(self.state, ()):
            raise IllegalTransition(f"request {self.request_id}: {self.state.value} -> {new.value}")
        self.state = new
        self.history.append(new)

    def to_dict(self) -> dict:
        out = {
            "requestId": self.request_id,
            "kind": self.kind.value,
            "status": self.state.value,
            "mode": self.mode.value if self.mode else None,
        }
        if self.state == RequestState.FINALIZED and self.artifact is not None:
            out.update(self.artifact.to_dict())
            signals = self.artifact.public_signals
            if self.kind == CircuitKind.AGE:
                out.update(isEligible=signals.is_eligible, commitment=str(signals.commitment), minAge=signals.min_age)
            else:
                out.update(
                    commitment=str(signals.commitment),
                    nullifierHash=str(signals.nullifier_hash),
                    pollId=signals.poll_id,
                )
        if self.state == RequestState.REJECTED:
            out.update(reason=self.reason.value, detail=self.detail, retryable=self.retryable)
        return out


def _parse_int(name: str, value) -> int:
    if isinstance(value, bool) or value is None:
        raise InvalidInput(f"{name} is required and must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise InvalidInput(f"{name} must be an integer")


def _parse_secret(name: str, value) -> int:
    """Secrets arrive as non-empty decimal strings (ints are accepted too)."""
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    # isdigit() alone admits superscripts and other non-ASCII digits
    if not isinstance(value, str) or not (value.strip().isascii() and value.strip().isdigit()):
        raise InvalidInput(f"{name} must be a non-empty numeric string")
    return commitment.check_field_element(int(value.strip()))


def _check_range(name: str, value: int, lo: int, hi: int) -> int:
    if not lo <= value <= hi:
        raise InvalidInput(f"{name} must be between {lo} and {hi}")
    return value


def audit_row(artifact: ProofArtifact) -> ProofAudit:
    signals = artifact.public_signals.to_signals()
    return ProofAudit(
        circuit=artifact.kind.circuit_name,
        mode=artifact.mode.value,
        signals_hash=hashlib.sha256(json.dumps(signals).encode()).hexdigest(),
        proof_root=proof_root(artifact.proof),
        public_signals=json.dumps(signals),
        timestamp=artifact.created_at.isoformat(),
    )


def proof_root(proof) -> str:
    proof_to_hash = json.dumps(proof, sort_keys=True) if isinstance(proof, dict) else str(proof)
    return hashlib.sha256(proof_to_hash.encode()).hexdigest()


class ProofOrchestrator:
    def __init__(
        self,
        registry: NullifierRegistry,
        polls: PollBook,
        circuit: Optional[ProofBackend] = None,
        simulation: Optional[ProofBackend] = None,
        session_factory: sessionmaker = SessionLocal,
        default_timeout: Optional[float] = PROOF_TIMEOUT,
    ):
        self.registry = registry
        self.polls = polls
        self.circuit = circuit or CircuitBackend()
        self.simulation = simulation or SimulationBackend()
        self._session_factory = session_factory
        self.default_timeout = default_timeout

    def submit_age(self, age, secret, min_age=None, timeout: Optional[float] = None) -> ProofRequest:
        return self.process(ProofRequest.age(age, secret, min_age, timeout))

    def submit_vote(self, candidate_id, voter_secret, nullifier_seed, poll_id, timeout: Optional[float] = None) -> ProofRequest:
        return self.process(ProofRequest.vote(candidate_id, voter_secret, nullifier_seed, poll_id, timeout))

    def select_backend(self, kind: CircuitKind) -> ProofBackend:
        return select_backend(self.circuit, self.simulation, kind)

    def validate(self, request: ProofRequest) -> Union[EligibilityClaim, VoteClaim]:
        p = request.payload
        if request.kind == CircuitKind.AGE:
            age = _check_range("age", _parse_int("age", p.get("age")), 0, MAX_AGE)
            min_age = p.get("minAge")
            min_age = DEFAULT_MIN_AGE if min_age is None else _parse_int("minAge", min_age)
            _check_range("minAge", min_age, 0, MAX_AGE)
            return EligibilityClaim(age=age, secret=_parse_secret("secret", p.get("secret")), min_age=min_age)

        poll_id = _parse_int("pollId", p.get("pollId"))
        poll = self.polls.get(poll_id)
        if poll is None:
            raise InvalidInput(f"unknown poll {poll_id}")
        if not poll.open:
            raise InvalidInput(f"poll {poll_id} is closed")
        candidate_id = _parse_int("candidateId", p.get("candidateId"))
        if candidate_id not in poll.candidates:
            raise InvalidInput(f"candidate {candidate_id} is not on the ballot for poll {poll_id}")
        return VoteClaim(
            candidate_id=candidate_id,
            voter_secret=_parse_secret("voterSecret", p.get("voterSecret")),
            nullifier_seed=_parse_secret("nullifierSeed", p.get("nullifierSeed")),
            poll_id=poll_id,
        )

    def process(self, request: ProofRequest) -> ProofRequest:
        if request.state != RequestState.RECEIVED:
            raise IllegalTransition(f"request {request.request_id} was already processed ({request.state.value})")
        deadline = Deadline(request.timeout if request.timeout is not None else self.default_timeout)

        try:
            request.claim = self.validate(request)
        except InvalidInput as exc:
            return self._reject(request, RejectionReason.INVALID_INPUT, str(exc))
        request.transition(RequestState.VALIDATED)

        backend = self.select_backend(request.kind)
        request.transition(RequestState.BACKEND_SELECTED)

        while True:
            request.mode = backend.mode
            request.transition(RequestState.PROVING)
            try:
                artifact = self._generate(backend, request.claim, deadline)
                self._check_signals(request.claim, artifact)
                break
            except (BackendUnavailable, CircuitNotProvisioned) as exc:
                if backend is self.simulation:
                    self._reject(request, RejectionReason.PROOF_GENERATION_FAILED, str(exc))
                    raise
                BACKEND_FALLBACKS.labels(request.kind.value, type(exc).__name__).inc()
                logger.warning("circuit backend failed mid-request, using simulation: %s", exc)
                backend = self.simulation
                request.transition(RequestState.BACKEND_SELECTED)
            except ProofGenerationFailed as exc:
                return self._reject(request, RejectionReason.PROOF_GENERATION_FAILED, str(exc))
            except Exception:
                self._reject(request, RejectionReason.PROOF_GENERATION_FAILED, "internal error during proving")
                raise

        if deadline.expired:
            return self._reject(request, RejectionReason.PROOF_GENERATION_FAILED, "proof generation timed out")
        return self._commit(request, artifact)

    def _generate(self, backend: ProofBackend, claim, deadline: Deadline) -> ProofArtifact:
        if isinstance(claim, EligibilityClaim):
            return backend.generate_eligibility_proof(claim, deadline)
        return backend.generate_vote_proof(claim, deadline)

    def _check_signals(self, claim, artifact: ProofArtifact) -> None:
        """The proven public signals must match what the commitment engine derives."""
        s = artifact.public_signals
        if isinstance(claim, EligibilityClaim):
            expected = (
                claim.min_age,
                commitment.eligibility_commitment(claim.age, claim.secret),
                claim.age >= claim.min_age,
            )
        else:
            expected = (
                claim.poll_id,
                commitment.vote_commitment(claim.candidate_id, claim.voter_secret, claim.poll_id),
                commitment.nullifier_hash(claim.nullifier_seed, claim.poll_id),
            )
        if tuple(s) != expected:
            raise ProofGenerationFailed(f"{artifact.kind.value} circuit public signals do not match the commitment scheme")

    def _commit(self, request: ProofRequest, artifact: ProofArtifact) -> ProofRequest:
        row = audit_row(artifact)
        try:
            if request.kind == CircuitKind.VOTE:
                signals = artifact.public_signals
                result = self.registry.reserve(
                    signals.poll_id,
                    signals.nullifier_hash,
                    commitment=signals.commitment,
                    proof_root=row.proof_root,
                    on_reserved=lambda db: db.add(row),
                )
                if result == ReserveResult.ALREADY_USED:
                    return self._reject(request, RejectionReason.DUPLICATE_VOTE, "nullifier already used for this poll")
            else:
                db = self._session_factory()
                try:
                    db.add(row)
                    db.commit()
                finally:
                    db.close()
        except SQLAlchemyError as exc:
            logger.exception("could not record proof for request %s", request.request_id)
            return self._reject(request, RejectionReason.PROOF_GENERATION_FAILED, f"could not record proof: {exc.__class__.__name__}")

        request.artifact = artifact
        request.transition(RequestState.FINALIZED)
        PROOFS_FINALIZED.labels(request.kind.value, artifact.mode.value).inc()
        logger.info(
            "proof request finalized",
            extra={"request_id": request.request_id, "kind": request.kind.value, "mode": artifact.mode.value},
        )
        return request

    def _reject(self, request: ProofRequest, reason: RejectionReason, detail: str) -> ProofRequest:
        request.reason = reason
        request.detail = detail
        request.transition(RequestState.REJECTED)
        REQUESTS_REJECTED.labels(request.kind.value, reason.value).inc()
        logger.info(
            "proof request rejected",
            extra={"request_id": request.request_id, "kind": request.kind.value, "reason": reason.value},
        )
        return request
