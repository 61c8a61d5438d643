"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


REQUEST_COUNTER = Counter(
	"clubhub_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"clubhub_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

REGISTRATIONS_CREATED = Counter(
	"clubhub_registrations_created_total",
	"Registrations admitted segmented by initial status",
	["status"],
)
REGISTRATIONS_REJECTED = Counter(
	"clubhub_registrations_rejected_total",
	"Registration requests rejected by admission",
	["reason"],
)
REGISTRATION_TRANSITIONS = Counter(
	"clubhub_registration_transitions_total",
	"Registration status transitions applied",
	["target"],
)
CHECK_INS = Counter(
	"clubhub_check_ins_total",
	"Check-in attempts segmented by result",
	["result"],
)
WAITLIST_PROMOTIONS = Counter(
	"clubhub_waitlist_promotions_total",
	"Waitlisted registrations promoted into a freed slot",
)
RECONCILIATION_CORRECTIONS = Counter(
	"clubhub_reconciliation_corrections_total",
	"Cached participant counters rewritten because they had drifted",
	["source"],
)
RECONCILIATION_FAILURES = Counter(
	"clubhub_reconciliation_failures_total",
	"Participant counter writes that failed and were left to the sweeper",
)
TX_RETRIES = Counter(
	"clubhub_db_transaction_retries_total",
	"Transactions retried after transient Postgres errors",
	["tx"],
)
RATE_LIMITED = Counter(
	"clubhub_rate_limited_total",
	"Requests rejected by rate limiting",
	["kind"],
)

BACKGROUND_RUNS = Counter(
	"clubhub_background_runs_total",
	"Background job runs",
	["name", "result"],
)
BACKGROUND_DURATION = Histogram(
	"clubhub_background_run_duration_seconds",
	"Background job duration",
	["name"],
)

REDIS_UP = Gauge("clubhub_redis_up", "Redis reachability (1 up, 0 down)")
POSTGRES_UP = Gauge("clubhub_postgres_up", "Postgres reachability (1 up, 0 down)")
REDIS_LATENCY = Histogram("clubhub_redis_ping_seconds", "Redis ping latency")
POSTGRES_LATENCY = Histogram("clubhub_postgres_ping_seconds", "Postgres ping latency")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_registration_created(status: str) -> None:
	REGISTRATIONS_CREATED.labels(status=status).inc()


def inc_registration_rejected(reason: str) -> None:
	REGISTRATIONS_REJECTED.labels(reason=reason).inc()


def inc_transition(target: str) -> None:
	REGISTRATION_TRANSITIONS.labels(target=target).inc()


def inc_check_in(result: str) -> None:
	CHECK_INS.labels(result=result).inc()


def inc_waitlist_promotions(count: int = 1) -> None:
	WAITLIST_PROMOTIONS.inc(count)


def inc_reconciliation_correction(source: str) -> None:
	RECONCILIATION_CORRECTIONS.labels(source=source).inc()


def inc_reconciliation_failure() -> None:
	RECONCILIATION_FAILURES.inc()


def inc_tx_retry(name: str) -> None:
	TX_RETRIES.labels(tx=name).inc()


def inc_rate_limited(kind: str) -> None:
	RATE_LIMITED.labels(kind=kind).inc()


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)


def record_job_run(name: str, *, result: str, duration_seconds: float | None = None) -> None:
	BACKGROUND_RUNS.labels(name=name, result=result).inc()
	if duration_seconds is not None:
		BACKGROUND_DURATION.labels(name=name).observe(duration_seconds)
