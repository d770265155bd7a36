"""
Unit tests for domain event payload builders and their dispatch scopes.
"""
import pytest

from mediaportal.notifications.events import (
    EmbedColor,
    IssueContext,
    RequestContext,
    SystemAlertContext,
    build_job_failed_payload,
    build_request_payload,
    notify_issue_event,
    notify_request_event,
    notify_system_alert,
)
from mediaportal.notifications.types import DispatchSummary


class StubDispatcher:
    def __init__(self):
        self.calls = []

    async def dispatch(self, event, payload, scope=None):
        self.calls.append((event, payload, scope))
        return DispatchSummary(event=event)


def issue(**kwargs):
    values = dict(
        issue_id="17",
        media_type="movie",
        tmdb_id=348,
        title="Alien",
        category="Audio",
        description="Audio out of sync",
        username="ripley",
        user_id=42,
    )
    values.update(kwargs)
    return IssueContext(**values)


@pytest.mark.unit
async def test_issue_reported_includes_global_endpoints():
    dispatcher = StubDispatcher()

    await notify_issue_event("issue_reported", issue(), dispatcher=dispatcher)

    event, payload, scope = dispatcher.calls[0]
    assert event == "issue_reported"
    assert payload.title == "Issue Reported: Alien"
    assert payload.color == EmbedColor.RED
    assert payload.data["issue_id"] == "17"
    assert list(scope.user_ids) == [42]
    assert scope.include_global is True


@pytest.mark.unit
async def test_issue_follow_up_only_reaches_reporter():
    dispatcher = StubDispatcher()

    await notify_issue_event("issue_resolved", issue(), dispatcher=dispatcher)

    _, payload, scope = dispatcher.calls[0]
    assert scope.include_global is False
    assert {"name": "Issue Status", "value": "Resolved", "inline": True} in payload.fields


@pytest.mark.unit
async def test_unknown_issue_event_raises():
    with pytest.raises(ValueError):
        await notify_issue_event("issue_deleted", issue(), dispatcher=StubDispatcher())


@pytest.mark.unit
def test_request_payload_links_to_media_page():
    ctx = RequestContext(
        request_id="5", request_type="tv", tmdb_id=1399, title="Dune", username="paul", year=2021,
    )

    payload = build_request_payload("request_available", ctx)

    assert payload.title == "Available: Dune (2021)"
    assert payload.url.endswith("/tv/1399")
    assert payload.color == EmbedColor.GREEN


@pytest.mark.unit
async def test_request_event_scope():
    dispatcher = StubDispatcher()
    ctx = RequestContext(request_id="5", request_type="movie", tmdb_id=438631, title="Dune", username="paul")

    await notify_request_event("request_denied", ctx, dispatcher=dispatcher)

    event, payload, scope = dispatcher.calls[0]
    assert event == "request_denied"
    assert payload.url.endswith("/movie/438631")
    assert list(scope.user_ids) == []
    assert scope.include_global is True


@pytest.mark.unit
async def test_system_alert_without_users_is_global_only():
    dispatcher = StubDispatcher()
    ctx = SystemAlertContext(title="Radarr is slow", service_name="Radarr", latency_ms=5400, threshold_ms=2000)

    await notify_system_alert("system_alert_high_latency", ctx, dispatcher=dispatcher)

    _, payload, scope = dispatcher.calls[0]
    assert scope is None
    assert {"name": "Latency", "value": "5400 ms", "inline": True} in payload.fields


@pytest.mark.unit
async def test_system_alert_to_admins():
    dispatcher = StubDispatcher()
    ctx = SystemAlertContext(title="Indexers down")

    await notify_system_alert(
        "system_alert_indexers_unavailable", ctx, user_ids=[1], include_global=False, dispatcher=dispatcher,
    )

    _, _, scope = dispatcher.calls[0]
    assert list(scope.user_ids) == [1]
    assert scope.include_global is False


@pytest.mark.unit
def test_job_failed_payload():
    payload = build_job_failed_payload("watchlist-sync", "connection refused", 1250)

    assert payload.title == "Job failed: watchlist-sync"
    assert payload.message == "connection refused"
    assert payload.data == {"event": "job_failed", "job": "watchlist-sync"}
