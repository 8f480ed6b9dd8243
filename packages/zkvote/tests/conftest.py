import hashlib
import json
import os
import sys
import tempfile
import threading
import time

import pytest

# set env vars before importing the package
_tmpdir = tempfile.mkdtemp(prefix="zkvote-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "1"
os.environ["CELERY_BROKER"] = "memory://"
os.environ["CELERY_BACKEND"] = "cache+memory://"
# No compiled circuits during tests: the service runs in simulation mode
os.environ["CIRCUIT_MANIFEST"] = os.path.join(_tmpdir, "missing", "manifest.json")
os.environ["SNARKJS_BIN"] = "zkvote-test-snarkjs-missing"
os.environ.pop("POLLS_PATH", None)

# allow "packages" imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..")))

from zkvote import commitment, service
from zkvote.backends import CircuitBackend, SimulationBackend
from zkvote.db import Base, SessionLocal, engine
from zkvote.errors import BackendUnavailable, CircuitNotProvisioned
from zkvote.models import PollConfiguration
from zkvote.orchestrator import ProofOrchestrator
from zkvote.polls import PollBook
from zkvote.registry import NullifierRegistry
from zkvote.snarkjs import CircuitArtifacts, SnarkjsProver
from zkvote.verification import VerificationService


class FakeProver:
    """Stands in for snarkjs: computes the circuit outputs with the commitment
    engine and binds the proof to the circuit and its public signals."""

    def __init__(self):
        self.provisioned = True
        self.reachable = True
        self.fail_with = None
        self.delay = 0.0
        self.tamper = False
        self.probe_delay = 0.0
        self.prove_calls = []
        self.on_prove = None
        self._lock = threading.Lock()
        self.active = {"ageVerification": 0, "voteCommitment": 0}
        self.max_active = {"ageVerification": 0, "voteCommitment": 0}

    def artifacts(self, circuit_name):
        if self.probe_delay:
            time.sleep(self.probe_delay)
        if not self.provisioned:
            raise CircuitNotProvisioned(f"{circuit_name} not compiled")
        return CircuitArtifacts(wasm="c.wasm", zkey="c.zkey", vkey="c.vkey", circuit_hash="test")

    def resolve_exe(self):
        if not self.reachable:
            raise BackendUnavailable("snarkjs executable not found")
        return "/usr/bin/snarkjs"

    @staticmethod
    def binding(circuit_name, public):
        data = json.dumps({"circuit": circuit_name, "public": [str(s) for s in public]}).encode()
        return hashlib.sha256(data).hexdigest()

    def prove(self, circuit_name, inputs, timeout=None):
        with self._lock:
            self.prove_calls.append((circuit_name, dict(inputs)))
            self.active[circuit_name] += 1
            self.max_active[circuit_name] = max(self.max_active[circuit_name], self.active[circuit_name])
        try:
            if self.on_prove:
                self.on_prove(circuit_name)
            if self.delay:
                time.sleep(self.delay)
            if self.fail_with:
                raise self.fail_with
            public = self._outputs(circuit_name, inputs)
            proof = {
                "pi_a": ["1", "2", "1"],
                "protocol": "groth16",
                "curve": "bn128",
                "binding": self.binding(circuit_name, public),
            }
            return proof, public
        finally:
            with self._lock:
                self.active[circuit_name] -= 1

    def _outputs(self, circuit_name, inputs):
        if circuit_name == "ageVerification":
            c = commitment.eligibility_commitment(inputs["age"], inputs["secret"])
            if self.tamper:
                c = (c + 1) % commitment.FIELD_MODULUS
            eligible = "1" if inputs["age"] >= inputs["minAge"] else "0"
            # circuit order: outputs first, then the public input
            return [str(c), eligible, str(inputs["minAge"])]
        c = commitment.vote_commitment(inputs["vote"], inputs["voterSecret"], inputs["pollId"])
        n = commitment.nullifier_hash(inputs["nullifier"], inputs["pollId"])
        if self.tamper:
            n = (n + 1) % commitment.FIELD_MODULUS
        return [str(inputs["pollId"]), str(c), str(n)]

    def verify(self, circuit_name, proof, public, timeout=None):
        if not self.reachable:
            raise BackendUnavailable("snarkjs executable not found")
        return proof.get("binding") == self.binding(circuit_name, public)

    def export_calldata(self, proof, public, timeout=None):
        return json.dumps([proof.get("binding"), [str(s) for s in public]])


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    service.reset()
    yield
    service.reset()


@pytest.fixture
def registry():
    return NullifierRegistry(SessionLocal)


@pytest.fixture
def polls():
    return PollBook({
        1: PollConfiguration(poll_id=1, candidates=frozenset({0, 1}), min_age=18, title="Demo poll"),
        2: PollConfiguration(poll_id=2, candidates=frozenset({1, 2, 3}), min_age=18),
        3: PollConfiguration(poll_id=3, candidates=frozenset({0, 1}), min_age=18, open=False),
    })


@pytest.fixture
def fake_prover():
    return FakeProver()


@pytest.fixture
def circuit_backend(fake_prover):
    return CircuitBackend(prover=fake_prover, probe_timeout=1.0, verify_timeout=5.0)


@pytest.fixture
def offline_backend():
    """Circuit backend with no manifest on disk."""
    return CircuitBackend(prover=SnarkjsProver(manifest_path=os.path.join(_tmpdir, "none.json")))


@pytest.fixture
def orchestrator(registry, polls, circuit_backend):
    return ProofOrchestrator(registry, polls, circuit=circuit_backend, simulation=SimulationBackend())


@pytest.fixture
def sim_orchestrator(registry, polls, offline_backend):
    return ProofOrchestrator(registry, polls, circuit=offline_backend, simulation=SimulationBackend())


@pytest.fixture
def verifier(registry, circuit_backend):
    return VerificationService(registry, circuit=circuit_backend, simulation=SimulationBackend())
