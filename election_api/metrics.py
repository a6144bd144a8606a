"""Prometheus metrics for the election service."""
from prometheus_client import Counter, Histogram

ballots_cast = Counter(
    "ballots_cast_total",
    "Total number of ballots committed"
)

ballot_rejections = Counter(
    "ballot_rejections_total",
    "Total number of ballots rejected before commit",
    ["error_type"]
)

partial_commits = Counter(
    "partial_commits_total",
    "Ballots recorded whose tally or voter flag could not be committed",
    ["stage"]
)

election_state_changes = Counter(
    "election_state_changes_total",
    "Changes to the voting and registration flags",
    ["flag", "state"]
)

request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"]
)
