"""Binding commitments and nullifiers over the BN254 scalar field.

The hash is MultiMiMC7 with 91 rounds and a zero key, the construction
circomlib ships as ``MultiMiMC7(n, 91)``. Circuits must use the same template
so that values computed here match the ones proven inside the circuit.
"""
from functools import lru_cache
from typing import Sequence

from web3 import Web3

from .errors import InputOutOfRange

FIELD_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617

MIMC_SEED = "mimc"
MIMC_ROUNDS = 91


@lru_cache(maxsize=1)
def round_constants() -> tuple[int, ...]:
    """keccak256 chain seeded with "mimc"; the first constant is zero."""
    constants = [0]
    c = Web3.keccak(text=MIMC_SEED)
    for _ in range(1, MIMC_ROUNDS):
        c = Web3.keccak(c)
        constants.append(int.from_bytes(c, "big") % FIELD_MODULUS)
    return tuple(constants)


def _mimc7(x: int, k: int) -> int:
    p = FIELD_MODULUS
    r = 0
    for i, c in enumerate(round_constants()):
        t = (x + k) % p if i == 0 else (r + k + c) % p
        r = pow(t, 7, p)
    return (r + k) % p


def check_field_element(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InputOutOfRange(f"expected an integer field element, got {type(value).__name__}")
    if not 0 <= value < FIELD_MODULUS:
        raise InputOutOfRange("value does not fit the field modulus")
    return value


def commit(values: Sequence[int]) -> int:
    """Hash an ordered sequence of field elements into one field element."""
    if not values:
        raise InputOutOfRange("commit() needs at least one value")
    p = FIELD_MODULUS
    r = 0
    for value in values:
        x = check_field_element(value)
        r = (r + x + _mimc7(x, r)) % p
    return r


def eligibility_commitment(age: int, secret: int) -> int:
    return commit([age, secret])


def vote_commitment(candidate_id: int, voter_secret: int, poll_id: int) -> int:
    return commit([candidate_id, voter_secret, poll_id])


def nullifier_hash(nullifier_seed: int, poll_id: int) -> int:
    return commit([nullifier_seed, poll_id])
