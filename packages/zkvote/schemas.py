from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import Any, List, Optional, Union

from .config import DEFAULT_MIN_AGE, PROOF_TIMEOUT

# --- Schemas for ZK Proof Generation ---
# Private values are accepted as numbers or numeric strings; the orchestrator
# does the range checks so that bad input ends as a rejected request.

class AgeProofInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    age: Union[int, str] = Field(..., examples=[25])
    secret: Union[int, str] = Field(..., examples=["12345"])
    # null or absent means DEFAULT_MIN_AGE
    min_age: Optional[Union[int, str]] = Field(None, alias="minAge", examples=[DEFAULT_MIN_AGE])
    timeout: Optional[float] = Field(None, gt=0, le=PROOF_TIMEOUT)


class VoteProofInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # "vote" and "nullifier" are the field names used by the web form
    candidate_id: Union[int, str] = Field(
        ..., validation_alias=AliasChoices("candidateId", "candidate_id", "vote"), examples=[1]
    )
    voter_secret: Union[int, str] = Field(..., alias="voterSecret", examples=["98765"])
    nullifier_seed: Union[int, str] = Field(
        ..., validation_alias=AliasChoices("nullifierSeed", "nullifier_seed", "nullifier"), examples=["54321"]
    )
    poll_id: Union[int, str] = Field(1, alias="pollId", examples=[1])
    timeout: Optional[float] = Field(None, gt=0, le=PROOF_TIMEOUT)


class VerifyInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    proof: Any
    public_signals: List[Any] = Field(..., alias="publicSignals")
    mode: Optional[str] = Field(None, examples=["circuit"])


class VerifyResultSchema(BaseModel):
    result: str
    isValid: bool
    mode: str


# --- Schemas for Polls ---

class PollSchema(BaseModel):
    pollId: int
    title: str
    candidates: List[int]
    minAge: int
    open: bool
    votes: int


# --- Schema for Proof Auditing ---

class ProofAuditSchema(BaseModel):
    id: int
    circuit: str
    mode: str
    signals_hash: str
    proof_root: str
    timestamp: str

    model_config = ConfigDict(from_attributes=True)
