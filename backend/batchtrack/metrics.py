# batchtrack/metrics.py
from prometheus_client import Counter, Histogram

from batchtrack.models.batch import BatchStatus
from batchtrack.models.production_log import LogType

# === Core metrics (definitions ONLY here) ===
status_transitions_total = Counter(
    "batch_status_transitions_total", "Applied batch status transitions", ["from_status", "to_status"]
)

transition_failures_total = Counter(
    "batch_transition_failures_total", "Rejected or failed status transitions", ["reason"]
)

production_log_entries_total = Counter(
    "production_log_entries_total", "Production log entries appended", ["log_type"]
)

batches_created_total = Counter(
    "batches_created_total", "Pre-processing batches created"
)

request_latency_seconds = Histogram(
    "request_latency_seconds", "Request latency"
)

def init_metrics_zero():
    # create label combos at 0 so dashboards never see "no data"
    for t in LogType:
        production_log_entries_total.labels(log_type=t.value).inc(0)
    for reason in ("validation", "not_found", "conflict", "persistence"):
        transition_failures_total.labels(reason=reason).inc(0)
    for s in BatchStatus:
        for t in BatchStatus:
            if s is not t:
                status_transitions_total.labels(from_status=s.value, to_status=t.value).inc(0)
    batches_created_total.inc(0)
