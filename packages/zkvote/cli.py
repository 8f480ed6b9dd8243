import json
import logging
from typing import Optional

import typer
from pythonjsonlogger import jsonlogger

handler = logging.StreamHandler()
handler.setFormatter(jsonlogger.JsonFormatter())
logging.basicConfig(level=logging.INFO, handlers=[handler])

from .db import SessionLocal, ProofAudit, init_db
from .errors import ZkVoteError
from .models import CircuitKind, VerificationResult, parse_public_signals
from .orchestrator import RequestState
from .service import get_circuit_backend, get_orchestrator, get_verifier

app = typer.Typer()

EXIT_CODES = {
    VerificationResult.VALID: 0,
    VerificationResult.INVALID: 1,
    VerificationResult.INCONCLUSIVE: 2,
}


def _load_json(path: str):
    try:
        with open(path) as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        typer.echo(f"cannot read {path}: {exc}", err=True)
        raise typer.Exit(code=1)


def _emit(request) -> None:
    typer.echo(json.dumps(request.to_dict()))
    if request.state != RequestState.FINALIZED:
        raise typer.Exit(code=1)


@app.command()
def prove_age(
    age: int = typer.Argument(...),
    secret: str = typer.Argument(...),
    min_age: Optional[int] = typer.Option(None, help="defaults to DEFAULT_MIN_AGE"),
    timeout: Optional[float] = typer.Option(None),
):
    """Generate an age-eligibility proof."""
    init_db()
    _emit(get_orchestrator().submit_age(age, secret, min_age, timeout))


@app.command()
def prove_vote(
    candidate_id: int = typer.Argument(...),
    voter_secret: str = typer.Argument(...),
    nullifier_seed: str = typer.Argument(...),
    poll_id: int = typer.Option(1),
    timeout: Optional[float] = typer.Option(None),
):
    """Generate a vote proof and consume its nullifier."""
    init_db()
    _emit(get_orchestrator().submit_vote(candidate_id, voter_secret, nullifier_seed, poll_id, timeout))


@app.command()
def verify(
    kind: CircuitKind = typer.Argument(...),
    proof_file: str = typer.Argument(...),
    public_file: str = typer.Argument(...),
    mode: Optional[str] = typer.Option(None),
):
    """Verify a proof; exit code 0 valid, 1 invalid, 2 inconclusive."""
    init_db()
    result = get_verifier().verify(kind, _load_json(proof_file), _load_json(public_file), mode)
    typer.echo(result.value)
    raise typer.Exit(code=EXIT_CODES[result])


@app.command()
def calldata(
    kind: CircuitKind = typer.Argument(...),
    proof_file: str = typer.Argument(...),
    public_file: str = typer.Argument(...),
):
    """Print Solidity verifier calldata for a circuit proof."""
    try:
        signals = parse_public_signals(kind, _load_json(public_file))
        typer.echo(get_circuit_backend().export_calldata(kind, _load_json(proof_file), signals))
    except ZkVoteError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)


@app.command()
def status():
    """Report circuit provisioning and prover reachability."""
    typer.echo(json.dumps(get_circuit_backend().status()))


@app.command()
def audit_proof(proof_root: str = typer.Argument(...)):
    init_db()
    db = SessionLocal()
    row = db.query(ProofAudit).filter_by(proof_root=proof_root).first()
    db.close()
    if not row:
        typer.echo("not found")
        raise typer.Exit(code=1)
    data = {
        "circuit": row.circuit,
        "mode": row.mode,
        "signals_hash": row.signals_hash,
        "proof_root": row.proof_root,
        "public_signals": json.loads(row.public_signals),
        "timestamp": row.timestamp,
    }
    typer.echo(json.dumps(data))

if __name__ == "__main__":
    app()
