from mergewatch.config import Settings
from mergewatch.metric import (
    _normalize_api_endpoint,
    api_call_count,
    push_metrics,
    record_api_call,
)


def test_record_api_call_tracks_endpoint_label():
    before = api_call_count.labels(endpoint="merge")._value.get()
    record_api_call("/rest/api/1.0/projects/PROJ/repos/repo/pull-requests/42/merge")
    after = api_call_count.labels(endpoint="merge")._value.get()
    assert after == before + 1


def test_normalize_api_endpoint_examples():
    assert (
        _normalize_api_endpoint("/rest/api/1.0/dashboard/pull-requests")
        == "pull-requests"
    )
    assert (
        _normalize_api_endpoint(
            "/rest/api/1.0/projects/PROJ/repos/repo/pull-requests/7/activities"
        )
        == "activities"
    )
    assert _normalize_api_endpoint("/rest/build-status/1.0/commits/abc") == (
        "build-status"
    )
    assert _normalize_api_endpoint("/plugins/servlet/applinks/whoami") == "whoami"
    assert (
        _normalize_api_endpoint("https://ci.example.com/job/x/buildWithParameters")
        == "jenkins-trigger"
    )
    assert (
        _normalize_api_endpoint("https://ci.example.com/job/x/12/api/json")
        == "jenkins-build"
    )
    assert _normalize_api_endpoint("/rest/api/1.0/users") == "other"


def test_push_metrics_without_gateway_is_noop(monkeypatch):
    calls = []
    monkeypatch.setattr(
        "mergewatch.metric.push_to_gateway", lambda *a, **kw: calls.append(a)
    )
    settings = Settings(BITBUCKET_URL="https://bb", BITBUCKET_API_TOKEN="t")

    push_metrics(settings)

    assert calls == []


def test_push_metrics_failure_is_logged(monkeypatch, caplog):
    def fail(*args, **kwargs):
        raise OSError("connection refused")

    monkeypatch.setattr("mergewatch.metric.push_to_gateway", fail)
    settings = Settings(
        BITBUCKET_URL="https://bb",
        BITBUCKET_API_TOKEN="t",
        PUSH_GATEWAY="localhost:9091",
    )

    push_metrics(settings)

    assert "Could not push metrics to localhost:9091" in caplog.text
