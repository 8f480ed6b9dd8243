"""Process-wide instances, created lazily on first use."""
from .backends import CircuitBackend, SimulationBackend
from .orchestrator import ProofOrchestrator
from .polls import PollBook
from .registry import NullifierRegistry
from .verification import VerificationService

_registry = None
_polls = None
_circuit = None
_orchestrator = None
_verifier = None


def get_registry() -> NullifierRegistry:
    global _registry
    if _registry is None:
        _registry = NullifierRegistry()
    return _registry


def get_polls() -> PollBook:
    global _polls
    if _polls is None:
        _polls = PollBook.from_file()
    return _polls


def get_circuit_backend() -> CircuitBackend:
    global _circuit
    if _circuit is None:
        _circuit = CircuitBackend()
    return _circuit


def get_orchestrator() -> ProofOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ProofOrchestrator(get_registry(), get_polls(), circuit=get_circuit_backend(), simulation=SimulationBackend())
    return _orchestrator


def get_verifier() -> VerificationService:
    global _verifier
    if _verifier is None:
        _verifier = VerificationService(get_registry(), circuit=get_circuit_backend(), simulation=SimulationBackend())
    return _verifier


def reset():
    """Drop cached instances (configuration reloads and tests)."""
    global _registry, _polls, _circuit, _orchestrator, _verifier
    _registry = _polls = _circuit = _orchestrator = _verifier = None
