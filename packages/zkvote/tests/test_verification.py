import pytest

from zkvote.backends import simulated_proof
from zkvote.models import CircuitKind, VerificationResult


def test_circuit_age_proof_valid(orchestrator, verifier):
    art = orchestrator.submit_age(25, "12345", 18).artifact
    assert verifier.verify(CircuitKind.AGE, art.proof, art.public_signals.to_signals()) == VerificationResult.VALID


def test_proof_does_not_verify_other_signals(orchestrator, verifier):
    a = orchestrator.submit_age(25, "12345", 18).artifact
    b = orchestrator.submit_age(40, "999", 18).artifact
    assert verifier.verify("age", a.proof, b.public_signals.to_signals()) == VerificationResult.INVALID

    # flipping the eligibility flag breaks the proof too
    forged = a.public_signals._replace(is_eligible=False).to_signals()
    assert verifier.verify("age", a.proof, forged) == VerificationResult.INVALID


def test_circuit_vote_proofs(orchestrator, verifier):
    a = orchestrator.submit_vote(0, "111", "222", 1).artifact
    b = orchestrator.submit_vote(1, "333", "444", 1).artifact
    assert verifier.verify("vote", a.proof, a.public_signals.to_signals()) == VerificationResult.VALID
    assert verifier.verify("vote", b.proof, b.public_signals.to_signals()) == VerificationResult.VALID
    assert verifier.verify("vote", a.proof, b.public_signals.to_signals()) == VerificationResult.INVALID


def test_unregistered_vote_is_invalid(orchestrator, verifier, registry, fake_prover):
    art = orchestrator.submit_vote(0, "111", "222", 1).artifact
    other = art.public_signals._replace(nullifier_hash=art.public_signals.nullifier_hash + 1)
    assert verifier.verify("vote", art.proof, other.to_signals()) == VerificationResult.INVALID

    # a commitment that was never finalized under this nullifier
    swapped = art.public_signals._replace(commitment=art.public_signals.commitment + 1)
    assert verifier.verify("vote", art.proof, swapped.to_signals()) == VerificationResult.INVALID


def test_simulation_artifacts_are_inconclusive(sim_orchestrator, verifier):
    age = sim_orchestrator.submit_age(25, "12345", 18).artifact
    assert verifier.verify("age", age.proof, age.public_signals.to_signals()) == VerificationResult.INCONCLUSIVE
    assert verifier.verify(
        "age", age.proof, age.public_signals.to_signals(), mode="simulation"
    ) == VerificationResult.INCONCLUSIVE

    vote = sim_orchestrator.submit_vote(1, "98765", "54321", 1).artifact
    assert verifier.verify("vote", vote.proof, vote.public_signals.to_signals()) == VerificationResult.INCONCLUSIVE


def test_mismatched_simulation_proof_is_invalid(sim_orchestrator, verifier):
    art = sim_orchestrator.submit_age(25, "12345", 18).artifact
    forged = art.public_signals._replace(is_eligible=False)
    assert verifier.verify("age", art.proof, forged.to_signals()) == VerificationResult.INVALID
    assert verifier.verify("age", simulated_proof(CircuitKind.AGE, forged), forged.to_signals()) == VerificationResult.INCONCLUSIVE


def test_no_circuit_backend_is_inconclusive(orchestrator, verifier, fake_prover):
    art = orchestrator.submit_age(25, "12345", 18).artifact
    fake_prover.provisioned = False
    assert verifier.verify("age", art.proof, art.public_signals.to_signals()) == VerificationResult.INCONCLUSIVE

    fake_prover.provisioned = True
    fake_prover.reachable = False
    assert verifier.verify("age", art.proof, art.public_signals.to_signals()) == VerificationResult.INCONCLUSIVE


@pytest.mark.parametrize(
    "proof, signals",
    [({"pi_a": []}, ["18", "1"]), ({"pi_a": []}, ["18", "x", "1"]), ("not-a-proof", ["18", "1", "1"]),
     ({"pi_a": []}, None), ({"pi_a": []}, ["18", "1", "7"])],
)
def test_malformed_input_is_invalid(verifier, proof, signals):
    assert verifier.verify("age", proof, signals) == VerificationResult.INVALID


def test_unknown_kind(verifier):
    with pytest.raises(ValueError):
        verifier.verify("ballot", {}, [])
