import time

from celery import Celery
from celery import signals
from prometheus_client import Counter, Histogram, start_http_server

from .config import BACKEND_URL, BROKER_URL, CELERY_METRICS_PORT, PROOF_TIMEOUT, TASK_ALWAYS_EAGER
from .models import CircuitKind
from .service import get_orchestrator

TASK_TIME = Histogram('celery_task_duration_seconds', 'Time spent on Celery tasks', ['name'])
TASK_SUCCESS = Counter('celery_task_success_total', 'Successful Celery tasks', ['name'])
TASK_FAILURE = Counter('celery_task_failure_total', 'Failed Celery tasks', ['name'])

if CELERY_METRICS_PORT:
    start_http_server(int(CELERY_METRICS_PORT))

celery_app = Celery('zkvote', broker=BROKER_URL, backend=BACKEND_URL, task_serializer='json', result_serializer='json', accept_content=['json'])
if TASK_ALWAYS_EAGER:
    celery_app.conf.task_always_eager = True
    celery_app.conf.task_store_eager_result = True

# One queue per circuit kind; run each queue's worker with --concurrency=1 to
# keep a single proving key in memory per circuit.
celery_app.conf.task_routes = {
    "zkvote.prove_age": {"queue": CircuitKind.AGE.value},
    "zkvote.prove_vote": {"queue": CircuitKind.VOTE.value},
}


@signals.task_prerun.connect
def _start_timer(task_id, task, **kwargs):
    task.__start_time__ = time.time()


@signals.task_postrun.connect
def _record_time(task_id, task, **kwargs):
    duration = time.time() - getattr(task, '__start_time__', time.time())
    TASK_TIME.labels(task.name).observe(duration)


@signals.task_success.connect
def _task_success(sender=None, result=None, **kwargs):
    TASK_SUCCESS.labels(sender.name).inc()


@signals.task_failure.connect
def _task_failure(sender=None, exception=None, **kwargs):
    TASK_FAILURE.labels(sender.name).inc()


# The hard limit only fires if the orchestrator's own deadline did not.
@celery_app.task(name="zkvote.prove_age", time_limit=PROOF_TIMEOUT * 2)
def prove_age(age, secret, min_age=None, timeout=None):
    """Run an age-eligibility request to a terminal state."""
    return get_orchestrator().submit_age(age, secret, min_age, timeout).to_dict()


@celery_app.task(name="zkvote.prove_vote", time_limit=PROOF_TIMEOUT * 2)
def prove_vote(candidate_id, voter_secret, nullifier_seed, poll_id, timeout=None):
    """Run a vote request to a terminal state."""
    return get_orchestrator().submit_vote(candidate_id, voter_secret, nullifier_seed, poll_id, timeout).to_dict()
