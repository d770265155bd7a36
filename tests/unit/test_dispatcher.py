"""
Unit tests for the notification dispatcher: endpoint matching, fan-out,
failure isolation and test sends.
"""
import asyncio

import pytest

from mediaportal.lib.errors import EndpointNotFoundError
from mediaportal.models.notifications import NotificationEndpoint, NotificationEndpointType, PushSubscription
from mediaportal.notifications.adapters.base import AdapterConfig, DeliveryError, NotificationAdapter
from mediaportal.notifications.dispatcher import NotificationDispatcher, build_test_payload
from mediaportal.notifications.endpoints import NotificationEndpointService
from mediaportal.notifications.types import DispatchScope, NotificationPayload, NotificationType, resolve_event


class FakeConfig(AdapterConfig):
    fail: bool = False
    hang: bool = False


class FakeAdapter(NotificationAdapter):
    """Records sends; behaviour is driven by the endpoint config."""
    config_model = FakeConfig

    def __init__(self, endpoint_type: str):
        self.endpoint_type = endpoint_type
        self.label = endpoint_type.title()
        self.sent = []

    async def _deliver(self, config, payload, target):
        if config.hang:
            await asyncio.sleep(5)
        if config.fail:
            raise DeliveryError(f"{self.label} API error: HTTP 500: upstream down", status_code=500)
        self.sent.append((payload, target))


class UnboundedAdapter(FakeAdapter):
    """Overrides send itself and raises, as a misbehaving adapter might."""

    async def send(self, config, payload, target=None):
        raise RuntimeError("adapter bug")


class GoneAdapter(FakeAdapter):
    async def send(self, config, payload, target=None):
        from mediaportal.notifications.types import DeliveryResult
        return DeliveryResult(ok=False, error="gone", gone=True)


@pytest.fixture
def adapters():
    return {t.value: FakeAdapter(t.value) for t in NotificationEndpointType}


@pytest.fixture
def dispatcher(session_factory, adapters):
    return NotificationDispatcher(session_factory=session_factory, adapters=adapters, send_timeout=0.2, enabled=True)


def add_endpoint(session_factory, endpoint_type="webhook", config=None, **kwargs):
    """Insert directly so tests can use the fake adapter configs."""
    with session_factory() as db:
        endpoint = NotificationEndpoint(
            name=kwargs.pop("name", f"{endpoint_type} endpoint"),
            type=NotificationEndpointType(endpoint_type),
            config=config or {},
            **kwargs,
        )
        db.add(endpoint)
        db.commit()
        return endpoint.id


def payload(title="Issue Reported: Alien"):
    return NotificationPayload(title=title, message="Audio out of sync")


# ===== Matching =====

@pytest.mark.unit
async def test_dispatch_respects_event_mask(dispatcher, adapters, session_factory):
    add_endpoint(
        session_factory, "webhook",
        event_mask=int(NotificationType.REQUEST_APPROVED | NotificationType.REQUEST_DECLINED),
    )

    approved = await dispatcher.dispatch("request_approved", payload())
    reported = await dispatcher.dispatch("issue_reported", payload())
    # request_denied is an alias of the declined bit
    denied = await dispatcher.dispatch("request_denied", payload())

    assert approved.attempted == 1 and approved.succeeded == 1
    assert reported.attempted == 0
    assert denied.attempted == 1
    assert len(adapters["webhook"].sent) == 2


@pytest.mark.unit
async def test_all_bit_matches_every_event(dispatcher, session_factory):
    add_endpoint(session_factory, "discord", event_mask=int(NotificationType.ALL))

    summary = await dispatcher.dispatch(NotificationType.JOB_FAILED, payload())

    assert summary.succeeded == 1
    assert summary.event == "job_failed"


@pytest.mark.unit
async def test_disabled_endpoints_are_skipped(dispatcher, session_factory):
    add_endpoint(session_factory, "slack", enabled=False)

    summary = await dispatcher.dispatch("issue_reported", payload())

    assert summary.attempted == 0


@pytest.mark.unit
async def test_unknown_event_raises(dispatcher):
    with pytest.raises(ValueError):
        await dispatcher.dispatch("not_an_event", payload())


@pytest.mark.unit
@pytest.mark.parametrize("event", [0, 3, -1, 1 << 40, int(NotificationType.ALL | NotificationType.JOB_FAILED)])
def test_resolve_event_rejects_combined_or_unknown_bits(event):
    with pytest.raises(ValueError):
        resolve_event(event)


@pytest.mark.unit
def test_resolve_event_accepts_single_bits_and_keys():
    assert resolve_event(1 << 16) is NotificationType.JOB_FAILED
    assert resolve_event(NotificationType.ISSUE_REPORTED) is NotificationType.ISSUE_REPORTED
    assert resolve_event("job_failed") is NotificationType.JOB_FAILED


@pytest.mark.unit
async def test_dispatch_rejects_multi_bit_event(dispatcher):
    with pytest.raises(ValueError):
        await dispatcher.dispatch(3, payload())


@pytest.mark.unit
async def test_dispatch_is_noop_when_notifications_disabled(session_factory, adapters):
    add_endpoint(session_factory, "webhook")
    dispatcher = NotificationDispatcher(session_factory=session_factory, adapters=adapters, enabled=False)

    summary = await dispatcher.dispatch("issue_reported", payload())

    assert summary.attempted == 0
    assert adapters["webhook"].sent == []


@pytest.mark.unit
async def test_scope_selects_assigned_endpoints(dispatcher, adapters, session_factory):
    global_id = add_endpoint(session_factory, "discord", is_global=True)
    personal_id = add_endpoint(session_factory, "telegram", is_global=False)
    other_id = add_endpoint(session_factory, "pushover", is_global=False)
    with session_factory() as db:
        service = NotificationEndpointService(db)
        service.assign_user(42, personal_id)
        service.assign_user(7, other_id)

    unscoped = await dispatcher.dispatch("issue_comment", payload())
    scoped = await dispatcher.dispatch("issue_comment", payload(), scope=DispatchScope(user_ids=[42]))
    only_user = await dispatcher.dispatch(
        "issue_comment", payload(), scope=DispatchScope(user_ids=[42], include_global=False)
    )

    assert [a.endpoint_id for a in unscoped.attempts] == [global_id]
    assert sorted(a.endpoint_id for a in scoped.attempts) == sorted([global_id, personal_id])
    assert [a.endpoint_id for a in only_user.attempts] == [personal_id]
    assert adapters["pushover"].sent == []


@pytest.mark.unit
async def test_event_key_is_added_to_payload_data(dispatcher, adapters, session_factory):
    add_endpoint(session_factory, "webhook")

    await dispatcher.dispatch("issue_resolved", payload())

    sent_payload, _ = adapters["webhook"].sent[0]
    assert sent_payload.data["event"] == "issue_resolved"


# ===== Failure isolation =====

@pytest.mark.unit
async def test_one_failing_endpoint_does_not_block_others(dispatcher, adapters, session_factory):
    for endpoint_type in ("discord", "slack", "gotify"):
        add_endpoint(session_factory, endpoint_type)
    failing_id = add_endpoint(session_factory, "webhook", config={"fail": True})

    summary = await dispatcher.dispatch("request_available", payload())

    assert summary.attempted == 4
    assert summary.succeeded == 3
    assert summary.failed == 1
    failed = [a for a in summary.attempts if not a.ok]
    assert failed[0].endpoint_id == failing_id
    assert "HTTP 500" in failed[0].error


@pytest.mark.unit
async def test_raising_adapter_is_contained(session_factory, adapters):
    adapters["webhook"] = UnboundedAdapter("webhook")
    dispatcher = NotificationDispatcher(session_factory=session_factory, adapters=adapters, enabled=True)
    add_endpoint(session_factory, "webhook")
    add_endpoint(session_factory, "discord")

    summary = await dispatcher.dispatch("issue_reported", payload())

    assert summary.succeeded == 1
    assert summary.failed == 1
    assert [a.error for a in summary.attempts if not a.ok] == ["adapter bug"]


@pytest.mark.unit
async def test_slow_endpoint_times_out(dispatcher, session_factory):
    add_endpoint(session_factory, "ntfy", config={"hang": True})
    add_endpoint(session_factory, "gotify")

    summary = await dispatcher.dispatch("system_alert", payload())

    assert summary.succeeded == 1
    timed_out = [a for a in summary.attempts if not a.ok][0]
    assert timed_out.error.startswith("Delivery timed out")


@pytest.mark.unit
async def test_invalid_stored_config_becomes_failed_attempt(session_factory):
    # Real adapters: a discord endpoint stored without a webhook URL
    dispatcher = NotificationDispatcher(session_factory=session_factory, enabled=True)
    add_endpoint(session_factory, "discord", config={})

    summary = await dispatcher.dispatch("issue_reported", payload())

    assert summary.attempted == 1
    assert summary.failed == 1
    assert "Invalid configuration" in summary.attempts[0].error


# ===== Web Push =====

def add_subscription(session_factory, user_id, endpoint):
    with session_factory() as db:
        return NotificationEndpointService(db).upsert_push_subscription(user_id, endpoint, "p256dh", "auth").id


@pytest.mark.unit
async def test_webpush_fans_out_per_subscription(dispatcher, adapters, session_factory):
    endpoint_id = add_endpoint(session_factory, "webpush", is_global=False)
    with session_factory() as db:
        NotificationEndpointService(db).assign_user(42, endpoint_id)
    add_subscription(session_factory, 42, "https://push.example/a")
    add_subscription(session_factory, 42, "https://push.example/b")
    add_subscription(session_factory, 7, "https://push.example/c")

    summary = await dispatcher.dispatch("request_approved", payload(), scope=DispatchScope(user_ids=[42, 7]))

    assert summary.attempted == 2
    targets = sorted(target["endpoint"] for _, target in adapters["webpush"].sent)
    assert targets == ["https://push.example/a", "https://push.example/b"]


@pytest.mark.unit
async def test_gone_subscription_is_deactivated(session_factory, adapters):
    adapters["webpush"] = GoneAdapter("webpush")
    dispatcher = NotificationDispatcher(session_factory=session_factory, adapters=adapters, enabled=True)
    endpoint_id = add_endpoint(session_factory, "webpush", is_global=False)
    with session_factory() as db:
        NotificationEndpointService(db).assign_user(42, endpoint_id)
    subscription_id = add_subscription(session_factory, 42, "https://push.example/a")

    summary = await dispatcher.dispatch("request_approved", payload(), scope=DispatchScope(user_ids=[42]))

    assert summary.attempts[0].gone is True
    with session_factory() as db:
        assert db.get(PushSubscription, subscription_id).active is False


# ===== Fire and forget =====

@pytest.mark.unit
async def test_dispatch_nowait_and_drain(dispatcher, adapters, session_factory):
    add_endpoint(session_factory, "slack")

    task = dispatcher.dispatch_nowait("issue_reported", payload())
    await dispatcher.drain()

    assert task.done()
    assert task.result().succeeded == 1
    assert len(adapters["slack"].sent) == 1


@pytest.mark.unit
async def test_dispatch_nowait_validates_event_eagerly(dispatcher):
    with pytest.raises(ValueError):
        dispatcher.dispatch_nowait("bogus", payload())


# ===== Test sends =====

@pytest.mark.unit
async def test_send_test_ignores_enabled_and_mask(dispatcher, adapters, session_factory):
    endpoint_id = add_endpoint(session_factory, "discord", enabled=False, event_mask=int(NotificationType.ISSUE_REPORTED))

    result = await dispatcher.send_test(endpoint_id)

    assert result.ok is True
    sent_payload, _ = adapters["discord"].sent[0]
    assert sent_payload.title == build_test_payload().title


@pytest.mark.unit
async def test_send_test_returns_adapter_error(dispatcher, session_factory):
    endpoint_id = add_endpoint(session_factory, "webhook", config={"fail": True})

    result = await dispatcher.send_test(endpoint_id)

    assert result.ok is False
    assert result.error == "Webhook API error: HTTP 500: upstream down"


@pytest.mark.unit
async def test_send_test_unknown_endpoint(dispatcher):
    with pytest.raises(EndpointNotFoundError):
        await dispatcher.send_test(999)


@pytest.mark.unit
async def test_send_test_webpush_without_subscriptions(dispatcher, session_factory):
    endpoint_id = add_endpoint(session_factory, "webpush")

    result = await dispatcher.send_test(endpoint_id)

    assert result.ok is False
    assert "No active push subscriptions" in result.error
