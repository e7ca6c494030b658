"""Prometheus metrics shared by the session pipeline and the sweeper."""

from prometheus_client import Counter, Gauge

SESSIONS_TOTAL = Counter(
    "tts_agi_sessions_total",
    "Call sessions handled, labelled by final state",
    ["outcome"],
)
SESSIONS_ACTIVE = Gauge(
    "tts_agi_sessions_active",
    "Call sessions currently running",
)
ARTIFACTS_CREATED = Counter(
    "tts_agi_artifacts_created_total",
    "Temporary audio files produced by the pipeline",
    ["kind"],
)
ARTIFACTS_DELETED = Counter(
    "tts_agi_artifacts_deleted_total",
    "Temporary audio files removed from disk",
    ["actor"],  # session | sweeper
)
CLEANUP_FAILURES = Counter(
    "tts_agi_cleanup_failures_total",
    "Temporary files that could not be removed",
    ["actor"],
)
