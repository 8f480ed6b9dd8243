import logging
from typing import Optional

from .backends import (
    CircuitBackend,
    ProofBackend,
    SimulationBackend,
    is_simulated,
    select_backend,
    simulated_proof,
)
from .errors import BackendUnavailable, CircuitNotProvisioned, InputOutOfRange, NotVerifiable
from .metrics import VERIFICATIONS
from .models import CircuitKind, ProofMode, PublicSignals, VerificationResult, parse_public_signals
from .registry import NullifierRegistry

logger = logging.getLogger(__name__)


class VerificationService:
    """Replays a submitted proof independently of how it was generated.

    ``INCONCLUSIVE`` means no cryptographic verdict was possible (simulation
    artifacts, or no circuit prover right now). It is never a pass.
    """

    def __init__(
        self,
        registry: NullifierRegistry,
        circuit: Optional[ProofBackend] = None,
        simulation: Optional[ProofBackend] = None,
    ):
        self.registry = registry
        self.circuit = circuit or CircuitBackend()
        self.simulation = simulation or SimulationBackend()

    def verify(self, kind, proof, public_signals, mode: Optional[str] = None) -> VerificationResult:
        kind = CircuitKind(kind)
        result = self._verify(kind, proof, public_signals, mode)
        VERIFICATIONS.labels(kind.value, result.value).inc()
        logger.info("verified %s proof: %s", kind.value, result.value)
        return result

    def _verify(self, kind: CircuitKind, proof, public_signals, mode: Optional[str]) -> VerificationResult:
        if not isinstance(proof, dict):
            return VerificationResult.INVALID
        try:
            signals = parse_public_signals(kind, public_signals)
        except InputOutOfRange:
            return VerificationResult.INVALID

        if kind == CircuitKind.VOTE and not self._matches_finalized_vote(signals):
            return VerificationResult.INVALID

        if mode == ProofMode.SIMULATION.value or is_simulated(proof):
            # Only the protocol shape can be checked: the placeholder proof
            # must be the one derived from these exact signals.
            if proof != simulated_proof(kind, signals):
                return VerificationResult.INVALID
            return VerificationResult.INCONCLUSIVE

        backend = select_backend(self.circuit, self.simulation, kind)
        try:
            valid = backend.verify(kind, proof, signals)
        except (NotVerifiable, BackendUnavailable, CircuitNotProvisioned) as exc:
            logger.warning("no cryptographic verdict for %s proof: %s", kind.value, exc)
            return VerificationResult.INCONCLUSIVE
        return VerificationResult.VALID if valid else VerificationResult.INVALID

    def _matches_finalized_vote(self, signals: PublicSignals) -> bool:
        record = self.registry.get(signals.poll_id, signals.nullifier_hash)
        if record is None:
            return False
        return record.commitment is None or record.commitment == str(signals.commitment)
