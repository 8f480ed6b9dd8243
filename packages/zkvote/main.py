# packages/zkvote/main.py

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
import json
import sentry_sdk
from sentry_sdk.integrations.asgi import SentryAsgiMiddleware

from prometheus_fastapi_instrumentator import Instrumentator
import logging
from pythonjsonlogger import jsonlogger

handler = logging.StreamHandler()
handler.setFormatter(jsonlogger.JsonFormatter())
logging.basicConfig(level=logging.INFO, handlers=[handler])

from .config import FRONTEND_ORIGIN, LOCAL_MODE, SENTRY_DSN

sentry_sdk.init(dsn=SENTRY_DSN)

from .db import get_db, init_db, ProofAudit
from .backends import is_simulated
from .models import CircuitKind, ProofMode, VerificationResult
from .orchestrator import ProofRequest, RejectionReason, RequestState
from .schemas import (
    AgeProofInput,
    VoteProofInput,
    VerifyInput,
    VerifyResultSchema,
    PollSchema,
    ProofAuditSchema,
)
from .service import get_circuit_backend, get_orchestrator, get_polls, get_registry, get_verifier
from .tasks import celery_app, prove_age, prove_vote

logger = logging.getLogger(__name__)

app = FastAPI(title="zkvote")
app.add_middleware(SentryAsgiMiddleware)

Instrumentator().instrument(app).expose(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_ORIGIN],
    allow_origin_regex=".*" if LOCAL_MODE else None,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Always expose CORS header even without Origin
@app.middleware("http")
async def add_cors_header(request: Request, call_next):
    try:
        response = await call_next(request)
    except Exception:
        # fall back to generic 500 response so CORS headers still apply
        logger.exception("handler error")
        response = JSONResponse({"detail": "Internal Server Error"}, status_code=500)
    if LOCAL_MODE:
        response.headers.setdefault("access-control-allow-origin", "*")
    else:
        response.headers.setdefault("access-control-allow-origin", FRONTEND_ORIGIN)
    return response


# Create tables on startup
init_db()

REJECTION_STATUS = {
    RejectionReason.INVALID_INPUT: 400,
    RejectionReason.DUPLICATE_VOTE: 409,
    RejectionReason.PROOF_GENERATION_FAILED: 503,
}


def _outcome(request: ProofRequest) -> dict:
    outcome = request.to_dict()
    if request.state == RequestState.REJECTED:
        raise HTTPException(status_code=REJECTION_STATUS[request.reason], detail=outcome)
    return outcome


def _kind(kind: str) -> CircuitKind:
    try:
        return CircuitKind(kind)
    except ValueError:
        raise HTTPException(404, f"unknown circuit '{kind}'")


@app.get("/health")
def health():
    status = get_circuit_backend().status()
    return {
        "status": "ok",
        "circuitsProvisioned": all(status["circuits"].values()),
        "backendReachable": status["backendReachable"],
    }


@app.get("/status")
def circuit_status():
    """Provisioning state of each circuit."""
    status = get_circuit_backend().status()
    compiled = all(status["circuits"].values())
    return {
        "circuits": status["circuits"],
        "circuitsCompiled": compiled,
        "setupComplete": compiled,
        "ready": compiled and status["backendReachable"],
    }


@app.post("/prove/age")
def post_age_proof(payload: AgeProofInput):
    job = prove_age.delay(payload.age, payload.secret, payload.min_age, payload.timeout)
    return {"job_id": job.id}


@app.post("/prove/vote")
def post_vote_proof(payload: VoteProofInput):
    job = prove_vote.delay(
        payload.candidate_id, payload.voter_secret, payload.nullifier_seed, payload.poll_id, payload.timeout
    )
    return {"job_id": job.id}


@app.post("/prove/age/sync")
def post_age_proof_sync(payload: AgeProofInput):
    return _outcome(get_orchestrator().submit_age(payload.age, payload.secret, payload.min_age, payload.timeout))


@app.post("/prove/vote/sync")
def post_vote_proof_sync(payload: VoteProofInput):
    request = get_orchestrator().submit_vote(
        payload.candidate_id, payload.voter_secret, payload.nullifier_seed, payload.poll_id, payload.timeout
    )
    return _outcome(request)


@app.get("/prove/{job_id}")
def get_proof_job(job_id: str):
    async_result = celery_app.AsyncResult(job_id)
    if async_result.state in {"PENDING", "STARTED"}:
        return {"status": async_result.state.lower()}
    if async_result.state == "SUCCESS":
        result_data = async_result.result
        if isinstance(result_data, str):
            try:
                result_data = json.loads(result_data)
            except json.JSONDecodeError:
                return {"status": "error", "detail": "Invalid result format from worker"}
        return result_data
    return {"status": "error"}


@app.post("/verify/{kind}", response_model=VerifyResultSchema)
def verify_proof(kind: str, payload: VerifyInput):
    circuit_kind = _kind(kind)
    result = get_verifier().verify(circuit_kind, payload.proof, payload.public_signals, payload.mode)
    simulated = payload.mode == ProofMode.SIMULATION.value or is_simulated(payload.proof)
    mode = ProofMode.SIMULATION if simulated else ProofMode.CIRCUIT
    return {"result": result.value, "isValid": result == VerificationResult.VALID, "mode": mode.value}


def _poll_schema(poll) -> dict:
    return {
        "pollId": poll.poll_id,
        "title": poll.title,
        "candidates": sorted(poll.candidates),
        "minAge": poll.min_age,
        "open": poll.open,
        "votes": get_registry().count(poll.poll_id),
    }


@app.get("/polls", response_model=list[PollSchema])
def list_polls():
    return [_poll_schema(p) for p in get_polls().all()]


@app.get("/polls/{poll_id}", response_model=PollSchema)
def get_poll(poll_id: int):
    poll = get_polls().get(poll_id)
    if not poll:
        raise HTTPException(404, "poll not found")
    return _poll_schema(poll)


@app.get("/polls/{poll_id}/nullifiers/{nullifier_hash}")
def get_nullifier(poll_id: int, nullifier_hash: str):
    if not get_polls().get(poll_id):
        raise HTTPException(404, "poll not found")
    if not nullifier_hash.isdigit():
        raise HTTPException(400, "nullifier hash must be a decimal field element")
    return {"pollId": poll_id, "nullifierHash": nullifier_hash, "reserved": get_registry().is_reserved(poll_id, int(nullifier_hash))}


@app.get("/proofs", response_model=list[ProofAuditSchema])
def list_proofs(skip: int = 0, limit: int = 50, db: Session = Depends(get_db)):
    """Return recent proof audit entries."""
    return (
        db.query(ProofAudit)
        .order_by(ProofAudit.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
