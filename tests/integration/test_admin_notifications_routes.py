"""
Integration tests for the /admin/notifications routes.
"""
import inspect

import pytest
from fastapi.testclient import TestClient

from mediaportal.api.app import app
from mediaportal.api.dependencies import get_db, get_dispatcher
from mediaportal.api.routes import admin_notifications
from mediaportal.api.routes.admin_notifications import TEST_SEND_LIMIT
from mediaportal.models.notifications import NotificationEndpointType
from mediaportal.notifications.adapters.base import AdapterConfig, DeliveryError, NotificationAdapter
from mediaportal.notifications.dispatcher import NotificationDispatcher
from mediaportal.notifications.types import NotificationType


DISCORD_CONFIG = {"webhookUrl": "https://discord.example/api/webhooks/1/abc"}


class ScriptedAdapter(NotificationAdapter):
    """Succeeds unless `error` is set, in which case it fails with that text."""
    config_model = AdapterConfig

    def __init__(self, endpoint_type):
        self.endpoint_type = endpoint_type
        self.label = endpoint_type.title()
        self.error = None
        self.sent = []

    async def _deliver(self, config, payload, target):
        if self.error:
            raise DeliveryError(self.error)
        self.sent.append(payload)


@pytest.fixture
def adapters():
    return {t.value: ScriptedAdapter(t.value) for t in NotificationEndpointType}


@pytest.fixture
def client(session_factory, adapters):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    dispatcher = NotificationDispatcher(session_factory=session_factory, adapters=adapters, enabled=True)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_discord(client, **kwargs):
    body = {"name": "Ops Discord", "type": "discord", "config": DISCORD_CONFIG}
    body.update(kwargs)
    response = client.post("/admin/notifications/endpoints", json=body)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.integration
def test_list_events(client):
    response = client.get("/admin/notifications/events")

    assert response.status_code == 200
    events = {e["name"]: e for e in response.json()}
    assert events["all"] == {"name": "all", "bit": 0, "value": 1}
    assert events["issue_reported"]["bit"] == 8
    assert events["job_failed"]["value"] == int(NotificationType.JOB_FAILED)


@pytest.mark.integration
def test_create_endpoint(client):
    data = create_discord(client, events=["issue_reported", "issue_comment"])

    assert data["type"] == "discord"
    assert data["is_global"] is True
    assert data["enabled"] is True
    assert data["event_mask"] == int(NotificationType.ISSUE_REPORTED | NotificationType.ISSUE_COMMENT)
    assert data["events"] == ["issue_reported", "issue_comment"]
    assert data["config"]["webhook_url"] == DISCORD_CONFIG["webhookUrl"]
    assert data["user_ids"] == []


@pytest.mark.integration
def test_create_endpoint_invalid_config(client):
    response = client.post(
        "/admin/notifications/endpoints",
        json={"name": "Broken", "type": "gotify", "config": {"url": "https://gotify.example"}},
    )

    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "Invalid configuration for gotify endpoint"
    assert data["details"]["errors"]["config"]
    assert client.get("/admin/notifications/endpoints").json()["total"] == 0


@pytest.mark.integration
def test_create_endpoint_unknown_event_name(client):
    response = client.post(
        "/admin/notifications/endpoints",
        json={"name": "Ops", "type": "discord", "config": DISCORD_CONFIG, "events": ["movie_night"]},
    )

    assert response.status_code == 400


@pytest.mark.integration
def test_create_endpoint_unknown_mask_bits(client):
    response = client.post(
        "/admin/notifications/endpoints",
        json={"name": "Ops", "type": "discord", "config": DISCORD_CONFIG, "event_mask": 1 << 40},
    )

    assert response.status_code == 400


@pytest.mark.integration
def test_list_and_filter_endpoints(client):
    create_discord(client)
    client.post(
        "/admin/notifications/endpoints",
        json={"name": "Topic", "type": "ntfy", "config": {"topic": "media"}},
    )

    everything = client.get("/admin/notifications/endpoints").json()
    ntfy_only = client.get("/admin/notifications/endpoints", params={"type": "ntfy"}).json()

    assert everything["total"] == 2
    assert [e["type"] for e in ntfy_only["endpoints"]] == ["ntfy"]


@pytest.mark.integration
def test_get_update_delete_endpoint(client):
    endpoint = create_discord(client)
    url = f"/admin/notifications/endpoints/{endpoint['id']}"

    patched = client.patch(url, json={"enabled": False, "name": "Quiet Discord"})
    fetched = client.get(url)
    deleted = client.delete(url)
    missing = client.get(url)

    assert patched.status_code == 200
    assert patched.json()["enabled"] is False
    assert fetched.json()["name"] == "Quiet Discord"
    assert deleted.status_code == 204
    assert missing.status_code == 404


@pytest.mark.integration
def test_update_endpoint_invalid_config(client):
    endpoint = create_discord(client)

    response = client.patch(
        f"/admin/notifications/endpoints/{endpoint['id']}",
        json={"config": {"webhookUrl": "not a url"}},
    )

    assert response.status_code == 422


@pytest.mark.integration
def test_user_assignment(client):
    endpoint = create_discord(client, is_global=False)
    base = f"/admin/notifications/endpoints/{endpoint['id']}/users"

    assert client.put(f"{base}/42").status_code == 204
    assert client.get(f"/admin/notifications/endpoints/{endpoint['id']}").json()["user_ids"] == [42]
    assert client.delete(f"{base}/42").status_code == 204
    assert client.delete(f"{base}/42").status_code == 404
    assert client.put("/admin/notifications/endpoints/999/users/42").status_code == 404


@pytest.mark.integration
def test_send_test_to_disabled_endpoint(client, adapters):
    endpoint = create_discord(client, enabled=False, events=["issue_reported"])

    response = client.post(f"/admin/notifications/endpoints/{endpoint['id']}/test")

    assert response.status_code == 200
    assert response.json() == {"ok": True, "error": None}
    assert adapters["discord"].sent[0].title == "Test Notification"


@pytest.mark.integration
def test_send_test_surfaces_adapter_error(client, adapters):
    adapters["discord"].error = "Discord API error: HTTP 401: Invalid Webhook Token"
    endpoint = create_discord(client)

    response = client.post(f"/admin/notifications/endpoints/{endpoint['id']}/test")

    assert response.status_code == 200
    assert response.json() == {"ok": False, "error": "Discord API error: HTTP 401: Invalid Webhook Token"}


@pytest.mark.integration
def test_send_test_unknown_endpoint(client):
    response = client.post("/admin/notifications/endpoints/999/test")

    assert response.status_code == 404


@pytest.mark.integration
def test_send_test_is_rate_limited(client):
    endpoint = create_discord(client)
    url = f"/admin/notifications/endpoints/{endpoint['id']}/test"

    statuses = [client.post(url).status_code for _ in range(TEST_SEND_LIMIT.max)]
    throttled = client.post(url)

    assert statuses == [200] * TEST_SEND_LIMIT.max
    assert throttled.status_code == 429
    assert int(throttled.headers["Retry-After"]) >= 1
    # A different forwarded client has its own window
    other = client.post(url, headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
    assert other.status_code == 200


@pytest.mark.integration
def test_register_push_subscription(client):
    body = {"user_id": 42, "endpoint": "https://push.example/a", "p256dh": "key", "auth": "secret"}

    first = client.post("/admin/notifications/push-subscriptions", json=body)
    again = client.post("/admin/notifications/push-subscriptions", json=body)

    assert first.status_code == 201
    assert first.json()["active"] is True
    assert again.json()["id"] == first.json()["id"]


@pytest.mark.integration
@pytest.mark.parametrize(
    "route",
    ["list_endpoints", "create_endpoint", "get_endpoint", "update_endpoint", "delete_endpoint",
     "assign_user", "unassign_user", "register_push_subscription"],
)
def test_database_routes_run_in_threadpool(route):
    assert not inspect.iscoroutinefunction(getattr(admin_notifications, route))
    assert inspect.iscoroutinefunction(admin_notifications.send_test_notification)
