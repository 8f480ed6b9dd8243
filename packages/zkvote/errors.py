class ZkVoteError(Exception):
    """Base class for protocol errors."""


class InvalidInput(ZkVoteError, ValueError):
    """Caller supplied a value the protocol cannot accept."""


class InputOutOfRange(InvalidInput):
    """A value does not fit the proving system's field."""


class BackendUnavailable(ZkVoteError):
    """The proving backend cannot be reached."""


class CircuitNotProvisioned(ZkVoteError):
    """Compiled circuit or setup artifacts are missing."""


class ProofGenerationFailed(ZkVoteError):
    """The backend could not produce a proof for the given witness."""

    retryable = True


class NotVerifiable(ZkVoteError):
    """The backend cannot give a cryptographic verdict."""


class IllegalTransition(ZkVoteError):
    """A proof request was driven out of a terminal or unexpected state."""
