"""Proving backends.

``CircuitBackend`` drives the real Groth16 circuits through snarkjs.
``SimulationBackend`` reproduces the public signals with the commitment engine
so the protocol can be exercised without provisioned circuits; its proofs carry
no cryptographic guarantee and are tagged ``mode=simulation``.
"""
import hashlib
import json
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout

from . import commitment
from .config import CIRCUIT_WORKERS, PROBE_TIMEOUT, PROOF_TIMEOUT
from .errors import (
    BackendUnavailable,
    CircuitNotProvisioned,
    InputOutOfRange,
    NotVerifiable,
    ProofGenerationFailed,
)
from .metrics import BACKEND_FALLBACKS, PROVING_TIME
from .models import (
    AgePublicSignals,
    CircuitKind,
    Deadline,
    EligibilityClaim,
    ProofArtifact,
    ProofMode,
    PublicSignals,
    VoteClaim,
    VotePublicSignals,
    parse_public_signals,
)
from .snarkjs import SnarkjsProver

logger = logging.getLogger(__name__)

SIMULATION_PROTOCOL = "simulation"

_probe_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="zkvote-probe")


class ProofBackend(ABC):
    mode: ProofMode

    def probe(self, kind: CircuitKind) -> None:
        """Raise BackendUnavailable or CircuitNotProvisioned if ``kind`` cannot be proven."""

    @abstractmethod
    def generate_eligibility_proof(self, claim: EligibilityClaim, deadline: Deadline) -> ProofArtifact:
        ...

    @abstractmethod
    def generate_vote_proof(self, claim: VoteClaim, deadline: Deadline) -> ProofArtifact:
        ...

    @abstractmethod
    def verify(self, kind: CircuitKind, proof: dict, public_signals: PublicSignals) -> bool:
        ...


# The age circuit emits its outputs before its public input:
# [commitment, isEligible, minAge]. The vote circuit already matches the
# canonical [pollId, commitment, nullifierHash].
def from_circuit_order(kind: CircuitKind, raw: list) -> PublicSignals:
    if kind == CircuitKind.AGE:
        if len(raw) != 3:
            raise InputOutOfRange("age circuit must emit 3 public signals")
        raw = [raw[2], raw[0], raw[1]]
    return parse_public_signals(kind, raw)


def to_circuit_order(kind: CircuitKind, signals: PublicSignals) -> list[str]:
    out = signals.to_signals()
    if kind == CircuitKind.AGE:
        return [out[1], out[2], out[0]]
    return out


class CircuitBackend(ProofBackend):
    mode = ProofMode.CIRCUIT

    def __init__(
        self,
        prover: SnarkjsProver | None = None,
        workers: int = CIRCUIT_WORKERS,
        probe_timeout: float = PROBE_TIMEOUT,
        verify_timeout: float = PROOF_TIMEOUT,
    ):
        self.prover = prover or SnarkjsProver()
        self.probe_timeout = probe_timeout
        self.verify_timeout = verify_timeout
        # Proving keys are large: bound concurrent proofs per circuit kind,
        # while age and vote proofs still run side by side.
        self._slots = {kind: threading.BoundedSemaphore(max(1, workers)) for kind in CircuitKind}

    def _check(self, kind: CircuitKind) -> None:
        self.prover.artifacts(kind.circuit_name)
        self.prover.resolve_exe()

    def probe(self, kind: CircuitKind) -> None:
        future = _probe_pool.submit(self._check, kind)
        try:
            future.result(timeout=self.probe_timeout)
        except FutureTimeout as exc:
            future.cancel()
            raise BackendUnavailable(f"{kind.value} prover probe timed out after {self.probe_timeout}s") from exc

    def status(self) -> dict:
        """Provisioning state of every circuit, for the status endpoints."""
        circuits = {}
        for kind in CircuitKind:
            try:
                self.prover.artifacts(kind.circuit_name)
                circuits[kind.value] = True
            except CircuitNotProvisioned:
                circuits[kind.value] = False
        try:
            self.prover.resolve_exe()
            reachable = True
        except BackendUnavailable:
            reachable = False
        return {"circuits": circuits, "backendReachable": reachable}

    def _prove(self, kind: CircuitKind, inputs: dict, deadline: Deadline) -> tuple[dict, list]:
        slot = self._slots[kind]
        if not slot.acquire(timeout=deadline.remaining()):
            raise ProofGenerationFailed(f"timed out waiting for the {kind.value} prover")
        try:
            with PROVING_TIME.labels(kind.value, self.mode.value).time():
                return self.prover.prove(kind.circuit_name, inputs, deadline.remaining())
        finally:
            slot.release()

    def _artifact(self, kind: CircuitKind, proof: dict, raw: list) -> ProofArtifact:
        try:
            signals = from_circuit_order(kind, raw)
        except InputOutOfRange as exc:
            raise ProofGenerationFailed(f"unexpected public signals from {kind.value} circuit: {exc}") from exc
        return ProofArtifact(kind=kind, proof=proof, public_signals=signals, mode=self.mode)

    def generate_eligibility_proof(self, claim: EligibilityClaim, deadline: Deadline) -> ProofArtifact:
        inputs = {"age": claim.age, "secret": claim.secret, "minAge": claim.min_age}
        proof, raw = self._prove(CircuitKind.AGE, inputs, deadline)
        return self._artifact(CircuitKind.AGE, proof, raw)

    def generate_vote_proof(self, claim: VoteClaim, deadline: Deadline) -> ProofArtifact:
        inputs = {
            "vote": claim.candidate_id,
            "voterSecret": claim.voter_secret,
            "nullifier": claim.nullifier_seed,
            "pollId": claim.poll_id,
        }
        proof, raw = self._prove(CircuitKind.VOTE, inputs, deadline)
        return self._artifact(CircuitKind.VOTE, proof, raw)

    def verify(self, kind: CircuitKind, proof: dict, public_signals: PublicSignals) -> bool:
        return self.prover.verify(kind.circuit_name, proof, to_circuit_order(kind, public_signals), self.verify_timeout)

    def export_calldata(self, kind: CircuitKind, proof: dict, public_signals: PublicSignals) -> str:
        return self.prover.export_calldata(proof, to_circuit_order(kind, public_signals))


def simulated_proof(kind: CircuitKind, public_signals: PublicSignals) -> dict:
    """Groth16-shaped placeholder derived from the public signals only."""
    data = json.dumps({"kind": kind.value, "publicSignals": public_signals.to_signals()}, sort_keys=True).encode()
    h = hashlib.sha256(data).hexdigest()
    return {
        "pi_a": [f"0x{h[0:8]}", f"0x{h[8:16]}", "1"],
        "pi_b": [[f"0x{h[16:24]}", f"0x{h[24:32]}"], [f"0x{h[32:40]}", f"0x{h[40:48]}"], ["1", "0"]],
        "pi_c": [f"0x{h[48:56]}", f"0x{h[56:64]}", "1"],
        "protocol": SIMULATION_PROTOCOL,
        "curve": "bn128",
    }


def is_simulated(proof) -> bool:
    return isinstance(proof, dict) and proof.get("protocol") == SIMULATION_PROTOCOL


class SimulationBackend(ProofBackend):
    mode = ProofMode.SIMULATION

    def generate_eligibility_proof(self, claim: EligibilityClaim, deadline: Deadline) -> ProofArtifact:
        with PROVING_TIME.labels(CircuitKind.AGE.value, self.mode.value).time():
            signals = AgePublicSignals(
                min_age=claim.min_age,
                commitment=commitment.eligibility_commitment(claim.age, claim.secret),
                is_eligible=claim.age >= claim.min_age,
            )
        return ProofArtifact(
            kind=CircuitKind.AGE,
            proof=simulated_proof(CircuitKind.AGE, signals),
            public_signals=signals,
            mode=self.mode,
        )

    def generate_vote_proof(self, claim: VoteClaim, deadline: Deadline) -> ProofArtifact:
        with PROVING_TIME.labels(CircuitKind.VOTE.value, self.mode.value).time():
            signals = VotePublicSignals(
                poll_id=claim.poll_id,
                commitment=commitment.vote_commitment(claim.candidate_id, claim.voter_secret, claim.poll_id),
                nullifier_hash=commitment.nullifier_hash(claim.nullifier_seed, claim.poll_id),
            )
        return ProofArtifact(
            kind=CircuitKind.VOTE,
            proof=simulated_proof(CircuitKind.VOTE, signals),
            public_signals=signals,
            mode=self.mode,
        )

    def verify(self, kind: CircuitKind, proof: dict, public_signals: PublicSignals) -> bool:
        raise NotVerifiable("simulation proofs carry no cryptographic guarantee")


def select_backend(circuit: ProofBackend, simulation: ProofBackend, kind: CircuitKind) -> ProofBackend:
    """Probe the circuit backend for ``kind``; fall back to simulation on any failure.

    Evaluated on every request, never cached.
    """
    try:
        circuit.probe(kind)
        return circuit
    except (BackendUnavailable, CircuitNotProvisioned) as exc:
        BACKEND_FALLBACKS.labels(kind.value, type(exc).__name__).inc()
        logger.warning("circuit backend unavailable for %s, using simulation: %s", kind.value, exc)
        return simulation
