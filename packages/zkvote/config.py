import os

# Always require an explicit `DATABASE_URL`: the nullifier registry must survive
# restarts for the lifetime of a poll, so there is no in-memory default.
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL must be set")

# SQLAlchemy expects the "postgresql" scheme; handle old "postgres" URLs too
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = "postgresql://" + DATABASE_URL[len("postgres://"):]

# Compiled circuit manifest: {name: {curve: {hash, wasm, zkey, vkey}}}
MANIFEST_PATH = os.getenv("CIRCUIT_MANIFEST", "/app/artifacts/manifest.json")
if not os.path.exists(MANIFEST_PATH):
    alt = os.path.join(os.getcwd(), "artifacts", "manifest.json")
    if os.path.exists(alt):
        MANIFEST_PATH = alt
CURVE = os.getenv("CURVE", "bn254").lower()
SNARKJS_BIN = os.getenv("SNARKJS_BIN", "node_modules/.bin/snarkjs")

POLLS_PATH = os.getenv("POLLS_PATH", "")
DEFAULT_MIN_AGE = int(os.getenv("DEFAULT_MIN_AGE", "18"))

# Seconds. The probe has to stay short so a hung prover degrades to
# simulation instead of stalling every request.
PROOF_TIMEOUT = float(os.getenv("PROOF_TIMEOUT", "60"))
PROBE_TIMEOUT = float(os.getenv("PROBE_TIMEOUT", "0.25"))
CIRCUIT_WORKERS = int(os.getenv("CIRCUIT_WORKERS", "1"))

BROKER_URL = os.getenv("CELERY_BROKER", "redis://localhost:6379/0")
BACKEND_URL = os.getenv("CELERY_BACKEND", "redis://localhost:6379/0")
TASK_ALWAYS_EAGER = bool(os.getenv("CELERY_TASK_ALWAYS_EAGER"))
CELERY_METRICS_PORT = os.getenv("CELERY_METRICS_PORT")

SENTRY_DSN = os.getenv("SENTRY_DSN")
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
LOCAL_MODE = "localhost" in FRONTEND_ORIGIN
