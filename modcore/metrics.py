from prometheus_client import Counter, Histogram, generate_latest

# Decision metrics
decisions_total = Counter(
    "modcore_decisions_total",
    "Moderation decisions produced",
    ["action", "source"],  # source: automated | rules | consensus | fallback
)

fail_open_total = Counter(
    "modcore_fail_open_total",
    "Decisions produced by the internal-error fallback",
    ["reason"],
)

analysis_duration = Histogram(
    "modcore_analysis_duration_seconds",
    "Time to analyze one piece of content",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)

# Rule engine metrics
rule_triggers_total = Counter(
    "modcore_rule_triggers_total",
    "Rules that triggered during evaluation",
    ["rule_id"],
)

rule_errors_total = Counter(
    "modcore_rule_errors_total",
    "Rules skipped because they could not be evaluated",
    ["rule_id"],
)

# Consensus metrics
votes_total = Counter(
    "modcore_votes_total",
    "Community feedback votes received",
    ["outcome"],  # accepted | duplicate | no_decision | low_reputation | store_error
)

override_recommendations_total = Counter(
    "modcore_override_recommendations_total",
    "Override recommendations queued for administrator review",
)

threshold_adjustments_total = Counter(
    "modcore_threshold_adjustments_total",
    "Block threshold nudges applied by the learning loop",
    ["direction"],  # direction: up | down
)


def render_metrics() -> bytes:
    """Return the Prometheus exposition payload for an external scrape endpoint."""
    return generate_latest()
