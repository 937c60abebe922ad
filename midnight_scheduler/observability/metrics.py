"""
Metrics definitions for the local-midnight trigger service.

This module defines Prometheus metrics for monitoring
scheduler ticks, ledger claims and downstream invocations.
"""

from prometheus_client import Counter, Histogram, Gauge

# 카운터 메트릭
ticks_total = Counter(
    "midnight_ticks_total",
    "Number of scheduler ticks by outcome",
    ["status"]
)

entities_skipped_invalid = Counter(
    "midnight_entities_skipped_invalid_total",
    "Entities skipped because their timezone is invalid"
)

crossings_detected = Counter(
    "midnight_crossings_detected_total",
    "Entities whose local date flipped inside a tick window"
)

claims_won = Counter(
    "midnight_claims_won_total",
    "Dedupe ledger claims won by this process"
)

claims_duplicate = Counter(
    "midnight_claims_duplicate_total",
    "Dedupe ledger claims that found an existing record"
)

downstream_invocations = Counter(
    "midnight_downstream_invocations_total",
    "Downstream sessionizer invocations",
    ["trigger"]
)

downstream_failures = Counter(
    "midnight_downstream_failures_total",
    "Downstream sessionizer failures (claimed but unprocessed)",
    ["trigger"]
)

retention_purged = Counter(
    "midnight_retention_purged_total",
    "Dedupe ledger records removed by the retention sweep"
)

# 히스토그램 메트릭
tick_seconds = Histogram(
    "midnight_tick_duration_seconds",
    "Time spent running one tick",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0]
)

downstream_seconds = Histogram(
    "midnight_downstream_duration_seconds",
    "Time spent in one downstream sessionizer call",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0]
)

# 게이지 메트릭
registry_entities = Gauge(
    "midnight_registry_entities",
    "Entities with a timezone seen by the last tick"
)

last_tick_candidates = Gauge(
    "midnight_last_tick_candidates",
    "Crossing candidates found by the last tick"
)

last_success_timestamp = Gauge(
    "midnight_last_success_timestamp_seconds",
    "Unix time of the last tick that completed without a storage error"
)

ticks_in_flight = Gauge(
    "midnight_ticks_in_flight",
    "Ticks currently running (overlap indicator)"
)

ledger_size = Gauge(
    "midnight_ledger_size",
    "Current number of records in the dedupe ledger"
)

scheduler_enabled = Gauge(
    "midnight_scheduler_enabled",
    "1 when the periodic trigger is enabled"
)

uptime_seconds = Gauge(
    "uptime_seconds",
    "Service uptime in seconds"
)
