"""Prometheus counters exported through the /metrics mount."""

from prometheus_client import Counter

WEBHOOK_NOTIFICATIONS = Counter(
    "fitlink_webhook_notifications_total",
    "Garmin push notification elements by kind and outcome",
    ["kind", "outcome"],
)
BACKFILL_SUBMISSIONS = Counter(
    "fitlink_backfill_submissions_total",
    "Backfill chunk submissions by summary type and resulting status",
    ["summary_type", "outcome"],
)
SYNC_RUNS = Counter(
    "fitlink_sync_runs_total",
    "Activity sync runs by provider and outcome",
    ["provider", "outcome"],
)
