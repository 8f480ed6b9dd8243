from prometheus_client import Counter, Histogram

PROOFS_FINALIZED = Counter('zkvote_proofs_finalized_total', 'Proof requests finalized', ['kind', 'mode'])
REQUESTS_REJECTED = Counter('zkvote_requests_rejected_total', 'Proof requests rejected', ['kind', 'reason'])
BACKEND_FALLBACKS = Counter('zkvote_backend_fallback_total', 'Requests served by the simulation backend', ['kind', 'cause'])
VERIFICATIONS = Counter('zkvote_verifications_total', 'Verification outcomes', ['kind', 'result'])
PROVING_TIME = Histogram('zkvote_proving_duration_seconds', 'Time spent generating proofs', ['kind', 'mode'])
