import logging
import re

from prometheus_client import CollectorRegistry, Counter, push_to_gateway

from mergewatch.config import Settings

logger = logging.getLogger("mergewatch")

push_registry = CollectorRegistry()

prs_checked_counter = Counter(
    "mergewatch_prs_checked",
    "Number of pull requests checked for the merge trigger",
    labelnames=["scope"],
    registry=push_registry,
)

merge_counter = Counter(
    "mergewatch_merges",
    "Number of merge attempts",
    labelnames=["result"],
    registry=push_registry,
)

rebuild_counter = Counter(
    "mergewatch_rebuilds",
    "Number of CI rebuilds triggered",
    labelnames=["result"],
    registry=push_registry,
)

api_call_count = Counter(
    "mergewatch_num_api_calls",
    "Total number of Bitbucket and Jenkins API calls",
    labelnames=["endpoint"],
    registry=push_registry,
)

error_counter = Counter(
    "mergewatch_error_counter",
    "Total number of errors",
    labelnames=["context"],
    registry=push_registry,
)


_ENDPOINT_PATTERNS = [
    (re.compile(r"/dashboard/pull-requests"), "pull-requests"),
    (re.compile(r"/pull-requests/\d+/merge"), "merge"),
    (re.compile(r"/pull-requests/\d+/activities"), "activities"),
    (re.compile(r"/rest/build-status/"), "build-status"),
    (re.compile(r"/applinks/whoami"), "whoami"),
    (re.compile(r"/buildWithParameters"), "jenkins-trigger"),
    (re.compile(r"/\d+/api/json"), "jenkins-build"),
]


def _normalize_api_endpoint(endpoint: str) -> str:
    for pattern, label in _ENDPOINT_PATTERNS:
        if pattern.search(endpoint):
            return label
    return "other"


def record_api_call(endpoint: str) -> None:
    api_call_count.labels(endpoint=_normalize_api_endpoint(endpoint)).inc()


def push_metrics(settings: Settings) -> None:
    if settings.PUSH_GATEWAY is None:
        return
    try:
        push_to_gateway(settings.PUSH_GATEWAY, job="mergewatch", registry=push_registry)
    except OSError:
        logger.warning(
            "Could not push metrics to %s", settings.PUSH_GATEWAY, exc_info=True
        )
