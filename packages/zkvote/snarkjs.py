import json
import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from typing import Optional

from .config import CURVE, MANIFEST_PATH, SNARKJS_BIN
from .errors import BackendUnavailable, CircuitNotProvisioned, ProofGenerationFailed
from .models import Deadline

logger = logging.getLogger(__name__)


class SnarkjsTimeout(ProofGenerationFailed):
    pass


@dataclass(frozen=True)
class CircuitArtifacts:
    wasm: str
    zkey: str
    vkey: str
    circuit_hash: str = ""


class SnarkjsProver:
    """Thin wrapper over the snarkjs CLI: witness, Groth16 prove and verify."""

    def __init__(self, manifest_path: str = MANIFEST_PATH, curve: str = CURVE, exe: str = SNARKJS_BIN):
        self.manifest_path = manifest_path
        self.curve = curve
        self.exe = exe

    def load_manifest(self) -> dict:
        # Re-read on every call so newly provisioned circuits are picked up
        if not os.path.exists(self.manifest_path):
            raise CircuitNotProvisioned(f"circuit manifest not found at {self.manifest_path}")
        try:
            with open(self.manifest_path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise CircuitNotProvisioned(f"unreadable circuit manifest: {exc}") from exc

    def artifacts(self, circuit_name: str) -> CircuitArtifacts:
        manifest = self.load_manifest()
        if not isinstance(manifest, dict):
            raise CircuitNotProvisioned("malformed manifest: expected an object of circuits")
        curves = manifest.get(circuit_name, {})
        if not isinstance(curves, dict):
            raise CircuitNotProvisioned(f"malformed manifest entry for '{circuit_name}'")
        entry = curves.get(self.curve)
        if not entry:
            raise CircuitNotProvisioned(f"circuit '{circuit_name}' for curve '{self.curve}' not in manifest")
        if not isinstance(entry, dict):
            raise CircuitNotProvisioned(f"malformed manifest entry for '{circuit_name}' on '{self.curve}'")
        base = os.path.abspath(os.path.join(os.path.dirname(self.manifest_path), ".."))
        paths = {}
        for key in ("wasm", "zkey", "vkey"):
            if not isinstance(entry.get(key), str):
                raise CircuitNotProvisioned(f"manifest entry for '{circuit_name}' has no {key}")
            path = os.path.join(base, entry[key])
            if not os.path.exists(path):
                raise CircuitNotProvisioned(f"missing {key} artifact for '{circuit_name}': {path}")
            paths[key] = path
        return CircuitArtifacts(circuit_hash=entry.get("hash", ""), **paths)

    def resolve_exe(self) -> str:
        exe = shutil.which(self.exe) or shutil.which("snarkjs")
        if not exe:
            raise BackendUnavailable("snarkjs executable not found")
        return exe

    def _run(self, args: list[str], timeout: Optional[float]) -> subprocess.CompletedProcess:
        cmd = [self.resolve_exe(), *args]
        try:
            return subprocess.run(cmd, check=True, capture_output=True, text=True, timeout=timeout)
        except FileNotFoundError as exc:
            raise BackendUnavailable(f"snarkjs vanished: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise SnarkjsTimeout(f"snarkjs {args[0]} {args[1]} timed out") from exc
        except subprocess.CalledProcessError as exc:
            raise ProofGenerationFailed(f"snarkjs {args[0]} {args[1]} failed: {(exc.stderr or exc.stdout or '').strip()}") from exc

    def prove(self, circuit_name: str, inputs: dict, timeout: Optional[float] = None) -> tuple[dict, list[str]]:
        """Generate a Groth16 proof and return (proof, public signals)."""
        art = self.artifacts(circuit_name)
        with tempfile.TemporaryDirectory(prefix="snarkjs_") as tmp:
            input_file = os.path.join(tmp, "input.json")
            wtns_file = os.path.join(tmp, "witness.wtns")
            proof_file = os.path.join(tmp, "proof.json")
            public_file = os.path.join(tmp, "public.json")

            with open(input_file, "w") as f:
                json.dump({k: str(v) for k, v in inputs.items()}, f)

            deadline = Deadline(timeout)
            self._run(["wtns", "calculate", art.wasm, input_file, wtns_file], _time_left(deadline))
            self._run(["groth16", "prove", art.zkey, wtns_file, proof_file, public_file], _time_left(deadline))
            try:
                with open(proof_file) as f:
                    proof = json.load(f)
                with open(public_file) as f:
                    public = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                raise ProofGenerationFailed(f"snarkjs produced unreadable output: {exc}") from exc
        return proof, [str(s) for s in public]

    def verify(self, circuit_name: str, proof: dict, public: list[str], timeout: Optional[float] = None) -> bool:
        art = self.artifacts(circuit_name)
        with tempfile.TemporaryDirectory(prefix="snarkjs_") as tmp:
            proof_file, public_file = self._write_pair(tmp, proof, public)
            try:
                self._run(["groth16", "verify", art.vkey, public_file, proof_file], timeout)
            except SnarkjsTimeout as exc:
                raise BackendUnavailable(str(exc)) from exc
            except ProofGenerationFailed:
                logger.info("snarkjs rejected proof for %s", circuit_name)
                return False
        return True

    def export_calldata(self, proof: dict, public: list[str], timeout: Optional[float] = None) -> str:
        """Solidity verifier calldata for an existing proof."""
        with tempfile.TemporaryDirectory(prefix="snarkjs_") as tmp:
            proof_file, public_file = self._write_pair(tmp, proof, public)
            out = self._run(["zkey", "export", "soliditycalldata", public_file, proof_file], timeout)
        return out.stdout.strip()

    @staticmethod
    def _write_pair(tmp: str, proof: dict, public: list[str]) -> tuple[str, str]:
        proof_file = os.path.join(tmp, "proof.json")
        public_file = os.path.join(tmp, "public.json")
        with open(proof_file, "w") as f:
            json.dump(proof, f)
        with open(public_file, "w") as f:
            json.dump([str(s) for s in public], f)
        return proof_file, public_file


def _time_left(deadline: Deadline) -> Optional[float]:
    if deadline.expired:
        raise SnarkjsTimeout("proof generation timed out")
    return deadline.remaining()
