"""Tests for webhook signing, delivery retry and dispatch fan-out."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from unittest.mock import AsyncMock

import httpx
import pytest
import structlog
from conftest import RecordingTransport, SleepRecorder

from hookgate.config import Settings
from hookgate.exceptions import MalformedRequestError, StorageError
from hookgate.models import DeliveryLogEntry, DeliveryResult
from hookgate.storage import InMemoryStorage
from hookgate.webhooks import (
    DeliveryAuditor,
    WebhookDeliverer,
    WebhookDispatcher,
    compute_signature,
    dispatch_webhook_event,
    serialize_payload,
    verify_signature,
)

OK_URL = "https://hooks.example.com/ok"
FAIL_URL = "https://hooks.example.com/fail"
HANG_URL = "https://hooks.example.com/hang"
DOWN_URL = "https://hooks.example.com/down"


def ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text="OK")


def server_error(request: httpx.Request) -> httpx.Response:
    return httpx.Response(500, text="boom")


async def hang(request: httpx.Request) -> httpx.Response:
    await asyncio.sleep(3600)
    return httpx.Response(200)


def connection_refused(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Connection refused", request=request)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport(
        {
            OK_URL: ok,
            FAIL_URL: server_error,
            HANG_URL: hang,
            DOWN_URL: connection_refused,
        }
    )


@pytest.fixture
def client(transport: RecordingTransport) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=transport)


@pytest.fixture
def deliverer(client: httpx.AsyncClient, sleeps: SleepRecorder) -> WebhookDeliverer:
    return WebhookDeliverer(timeout_seconds=0.05, client=client, sleep=sleeps)


@pytest.fixture
def dispatcher(storage: InMemoryStorage, deliverer: WebhookDeliverer) -> WebhookDispatcher:
    return WebhookDispatcher(storage, deliverer=deliverer)


class TestSignature:
    """Tests for payload serialization and HMAC signatures."""

    def test_signature_matches_independent_hmac(self):
        """Signature over {"a":1} with "s3cret" equals a plain HMAC-SHA256."""
        body = serialize_payload({"a": 1})
        expected = hmac.new(b"s3cret", b'{"a":1}', hashlib.sha256).hexdigest()

        assert body == b'{"a":1}'
        assert compute_signature(body, "s3cret") == expected

    def test_signature_is_lowercase_hex(self):
        """Signature should be 64 lowercase hex characters."""
        signature = compute_signature(b"{}", "secret")
        assert len(signature) == 64
        assert signature == signature.lower()
        int(signature, 16)

    def test_serialization_preserves_key_order(self):
        """Keys are sent in the order the producer gave them."""
        assert serialize_payload({"b": 2, "a": 1}) == b'{"b":2,"a":1}'

    def test_serialization_keeps_unicode(self):
        """Non-ASCII text is sent as UTF-8, not escaped."""
        assert serialize_payload({"name": "José"}) == '{"name":"José"}'.encode()

    def test_verify_signature(self):
        """verify_signature accepts the right secret and body only."""
        body = serialize_payload({"a": 1})
        signature = compute_signature(body, "s3cret")

        assert verify_signature(body, "s3cret", signature)
        assert not verify_signature(body, "wrong", signature)
        assert not verify_signature(b'{"a":2}', "s3cret", signature)

    def test_reordered_body_fails_verification(self):
        """A re-serialized (reordered) body must not verify."""
        payload = {"b": 2, "a": 1}
        signature = compute_signature(serialize_payload(payload), "s3cret")
        reordered = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()

        assert not verify_signature(reordered, "s3cret", signature)

    @pytest.mark.asyncio
    async def test_receiver_round_trip(self, make_webhook, deliverer, transport):
        """A receiver recomputing the HMAC over the raw body gets the header value."""
        webhook = make_webhook(secret="s3cret")
        payload = {"z": [1, 2, 3], "a": {"nested": True}, "name": "José"}

        result = await deliverer.deliver(webhook, "goal.achieved", payload)

        assert result.success
        (request,) = transport.requests
        assert request.content == serialize_payload(payload)
        assert verify_signature(request.content, "s3cret", request.headers["X-Webhook-Signature"])
        assert json.loads(request.content) == payload


class TestWebhookDeliverer:
    """Tests for the bounded retry loop."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, make_webhook, deliverer, sleeps):
        """A 2xx answer succeeds without retrying."""
        result = await deliverer.deliver(make_webhook(), "goal.achieved", {"a": 1})

        assert result.success
        assert result.status_code == 200
        assert result.attempts == 1
        assert result.error is None
        assert sleeps.delays == []

    @pytest.mark.asyncio
    async def test_sends_webhook_headers(self, make_webhook, deliverer, transport):
        """Each request carries event, signature, timestamp and id headers."""
        webhook = make_webhook()
        await deliverer.deliver(webhook, "goal.achieved", {"a": 1})

        (request,) = transport.requests
        assert request.method == "POST"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["X-Webhook-Event"] == "goal.achieved"
        assert request.headers["X-Webhook-Id"] == webhook.id
        assert request.headers["X-Webhook-Signature"] == compute_signature(b'{"a":1}', "s3cret")
        assert request.headers["X-Webhook-Timestamp"].isdigit()
        assert len(request.headers["X-Webhook-Timestamp"]) >= 13

    @pytest.mark.asyncio
    async def test_http_500_retries_three_times(self, make_webhook, deliverer, transport, sleeps):
        """An always-500 endpoint gets 3 attempts with 1s then 2s backoff."""
        result = await deliverer.deliver(make_webhook(url=FAIL_URL), "goal.achieved", {"a": 1})

        assert not result.success
        assert result.attempts == 3
        assert result.status_code == 500
        assert result.error == "HTTP 500"
        assert len(transport.requests_to(FAIL_URL)) == 3
        assert sleeps.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_every_attempt_sends_identical_body(self, make_webhook, deliverer, transport):
        """Retries resend the same signed bytes."""
        await deliverer.deliver(make_webhook(url=FAIL_URL), "goal.achieved", {"b": 1, "a": 2})

        bodies = {r.content for r in transport.requests}
        signatures = {r.headers["X-Webhook-Signature"] for r in transport.requests}
        assert bodies == {b'{"b":1,"a":2}'}
        assert len(signatures) == 1

    @pytest.mark.asyncio
    async def test_timeout_is_a_failure(self, make_webhook, deliverer, transport):
        """A hanging endpoint times out each attempt and returns a failure."""
        result = await deliverer.deliver(make_webhook(url=HANG_URL), "goal.achieved", {})

        assert not result.success
        assert result.attempts == 3
        assert result.status_code is None
        assert "timeout" in result.error.lower()
        assert len(transport.requests_to(HANG_URL)) == 3

    @pytest.mark.asyncio
    async def test_network_error_is_a_failure(self, make_webhook, deliverer):
        """Connection errors are retried and reported, never raised."""
        result = await deliverer.deliver(make_webhook(url=DOWN_URL), "goal.achieved", {})

        assert not result.success
        assert result.attempts == 3
        assert "Network error" in result.error

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, make_webhook, sleeps):
        """A 503 followed by a 200 succeeds on attempt 2."""
        answers = iter([503, 200])
        flaky = RecordingTransport(
            {OK_URL: lambda request: httpx.Response(next(answers))},
        )
        deliverer = WebhookDeliverer(
            timeout_seconds=1.0,
            client=httpx.AsyncClient(transport=flaky),
            sleep=sleeps,
        )

        result = await deliverer.deliver(make_webhook(), "goal.achieved", {})

        assert result.success
        assert result.attempts == 2
        assert result.status_code == 200
        assert sleeps.delays == [1.0]

    @pytest.mark.asyncio
    async def test_custom_attempts_and_delay(self, make_webhook, client, sleeps):
        """Attempts and base delay come from the constructor."""
        deliverer = WebhookDeliverer(
            timeout_seconds=1.0,
            max_attempts=4,
            retry_delay_seconds=0.5,
            client=client,
            sleep=sleeps,
        )

        result = await deliverer.deliver(make_webhook(url=FAIL_URL), "goal.achieved", {})

        assert result.attempts == 4
        assert sleeps.delays == [0.5, 1.0, 2.0]


class TestWebhookDispatcher:
    """Tests for fan-out, auditing and webhook health."""

    def test_init_defaults(self, storage):
        """Dispatcher should default to 10 concurrent deliveries and a threshold of 10."""
        dispatcher = WebhookDispatcher(storage)
        assert dispatcher._max_concurrent == 10
        assert dispatcher._failure_threshold == 10
        assert isinstance(dispatcher.auditor, DeliveryAuditor)

    def test_from_settings(self, storage):
        """from_settings should carry delivery settings through."""
        settings = Settings(
            webhook_timeout_seconds=5.0,
            webhook_max_attempts=2,
            webhook_failure_threshold=4,
            webhook_max_concurrent=3,
        )
        dispatcher = WebhookDispatcher.from_settings(storage, settings)

        assert dispatcher._failure_threshold == 4
        assert dispatcher._max_concurrent == 3
        assert dispatcher._deliverer._timeout == 5.0
        assert dispatcher._deliverer._max_attempts == 2

    @pytest.mark.asyncio
    async def test_no_subscribers(self, storage, dispatcher):
        """An event nobody subscribes to returns an empty summary."""
        summary = await dispatcher.dispatch("goal.achieved", {"a": 1})

        assert summary.total == 0
        assert summary.delivered == 0
        assert summary.failed == 0
        assert storage.deliveries == []

    @pytest.mark.asyncio
    async def test_failed_delivery_logs_once(self, storage, make_webhook, dispatcher, transport):
        """Three failed attempts produce exactly one delivery log entry."""
        webhook = make_webhook(url=FAIL_URL)
        await storage.store_webhook(webhook)

        summary = await dispatcher.dispatch("goal.achieved", {"a": 1})

        assert summary.failed == 1
        assert len(transport.requests_to(FAIL_URL)) == 3
        (entry,) = storage.deliveries
        assert entry.subscription_id == webhook.id
        assert entry.event_type == "goal.achieved"
        assert entry.payload == {"a": 1}
        assert entry.success is False
        assert entry.response_status == 500
        assert entry.error_message == "HTTP 500"
        assert entry.attempts == 3

    @pytest.mark.asyncio
    async def test_successful_delivery_logs_once(self, storage, make_webhook, dispatcher):
        """A successful delivery is logged with its status."""
        webhook = make_webhook()
        await storage.store_webhook(webhook)

        summary = await dispatcher.dispatch("goal.achieved", {"a": 1})

        assert summary.delivered == 1
        (entry,) = storage.deliveries
        assert entry.success is True
        assert entry.response_status == 200
        assert entry.error_message is None

    @pytest.mark.asyncio
    async def test_circuit_breaker_disables_at_ten(
        self, storage, make_webhook, dispatcher, transport
    ):
        """A webhook at 9 failures is disabled by the 10th and skipped afterwards."""
        webhook = make_webhook(url=FAIL_URL, failure_count=9)
        await storage.store_webhook(webhook)

        await dispatcher.dispatch("goal.achieved", {"a": 1})

        stored = await storage.get_webhook(webhook.id)
        assert stored.failure_count == 10
        assert stored.status == "disabled"
        requests_before = len(transport.requests)
        logs_before = len(storage.deliveries)

        summary = await dispatcher.dispatch("goal.achieved", {"a": 2})

        assert summary.total == 0
        assert len(transport.requests) == requests_before
        assert len(storage.deliveries) == logs_before

    @pytest.mark.asyncio
    async def test_failure_below_threshold_stays_active(self, storage, make_webhook, dispatcher):
        """Failures below the threshold only increment the counter."""
        webhook = make_webhook(url=FAIL_URL, failure_count=3)
        await storage.store_webhook(webhook)

        await dispatcher.dispatch("goal.achieved", {})

        stored = await storage.get_webhook(webhook.id)
        assert stored.failure_count == 4
        assert stored.status == "active"
        assert stored.last_triggered_at is not None

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, storage, make_webhook, dispatcher):
        """A webhook at 7 failures is reset to 0 by a success."""
        webhook = make_webhook(failure_count=7)
        await storage.store_webhook(webhook)

        await dispatcher.dispatch("goal.achieved", {})

        stored = await storage.get_webhook(webhook.id)
        assert stored.failure_count == 0
        assert stored.status == "active"
        assert stored.last_triggered_at is not None

    @pytest.mark.asyncio
    async def test_fan_out_isolation(self, storage, make_webhook, dispatcher):
        """Hang, 200 and 500 endpoints give delivered=1, failed=2, each logged."""
        hanging = make_webhook(url=HANG_URL)
        healthy = make_webhook(url=OK_URL)
        failing = make_webhook(url=FAIL_URL)
        for webhook in (hanging, healthy, failing):
            await storage.store_webhook(webhook)

        summary = await dispatcher.dispatch("goal.achieved", {"a": 1})

        assert summary.delivered == 1
        assert summary.failed == 2
        assert summary.total == 3
        by_id = {r.subscription_id: r for r in summary.results}
        assert by_id[healthy.id].success
        assert by_id[healthy.id].attempts == 1
        assert not by_id[failing.id].success
        assert by_id[failing.id].status_code == 500
        assert not by_id[hanging.id].success
        assert "timeout" in by_id[hanging.id].error.lower()
        assert by_id[healthy.id].duration_ms <= by_id[hanging.id].duration_ms
        assert {e.subscription_id for e in storage.deliveries} == {
            hanging.id,
            healthy.id,
            failing.id,
        }

    @pytest.mark.asyncio
    async def test_user_filter(self, storage, make_webhook, dispatcher):
        """With a user_id, only that user's webhooks receive the event."""
        mine = make_webhook(user_id="user_1")
        theirs = make_webhook(user_id="user_2")
        await storage.store_webhook(mine)
        await storage.store_webhook(theirs)

        summary = await dispatcher.dispatch("goal.achieved", {}, user_id="user_1")

        assert [r.subscription_id for r in summary.results] == [mine.id]

    @pytest.mark.asyncio
    async def test_event_filter(self, storage, make_webhook, dispatcher):
        """Webhooks not subscribed to the event kind are skipped."""
        await storage.store_webhook(make_webhook(events=["user.created"]))

        summary = await dispatcher.dispatch("goal.achieved", {})

        assert summary.total == 0

    @pytest.mark.asyncio
    async def test_paused_webhook_skipped(self, storage, make_webhook, dispatcher, transport):
        """Only active webhooks receive events."""
        await storage.store_webhook(make_webhook(status="paused"))

        summary = await dispatcher.dispatch("goal.achieved", {})

        assert summary.total == 0
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_unexpected_delivery_error_is_captured(self, storage, make_webhook):
        """An exception escaping the deliverer becomes a logged failure."""
        healthy = make_webhook()
        broken = make_webhook()
        await storage.store_webhook(healthy)
        await storage.store_webhook(broken)

        async def deliver(webhook, event_type, payload, **kwargs):
            if webhook.id == broken.id:
                raise RuntimeError("kaboom")
            return DeliveryResult(subscription_id=webhook.id, success=True, status_code=200)

        deliverer = AsyncMock(spec=WebhookDeliverer)
        deliverer.deliver.side_effect = deliver
        dispatcher = WebhookDispatcher(storage, deliverer=deliverer)

        summary = await dispatcher.dispatch("goal.achieved", {})

        assert summary.delivered == 1
        assert summary.failed == 1
        failed = next(r for r in summary.results if not r.success)
        assert failed.subscription_id == broken.id
        assert "kaboom" in failed.error
        assert len(storage.deliveries) == 2
        assert (await storage.get_webhook(broken.id)).failure_count == 1

    @pytest.mark.asyncio
    async def test_unencodable_payload_is_rejected_before_delivery(
        self, storage, make_webhook, dispatcher, transport
    ):
        """A payload that is not valid JSON is refused up front and no breaker moves."""
        webhook = make_webhook(failure_count=9)
        await storage.store_webhook(webhook)

        with pytest.raises(MalformedRequestError) as exc_info:
            await dispatcher.dispatch("goal.achieved", {"v": float("nan")})

        assert exc_info.value.field == "payload"
        assert transport.requests == []
        assert storage.deliveries == []
        stored = await storage.get_webhook(webhook.id)
        assert stored.failure_count == 9
        assert stored.status == "active"

    @pytest.mark.asyncio
    async def test_payload_serialized_once_for_all_webhooks(self, storage, make_webhook):
        """Every webhook is handed the same pre-encoded body."""
        for _ in range(3):
            await storage.store_webhook(make_webhook())
        deliverer = AsyncMock(spec=WebhookDeliverer)
        deliverer.deliver.side_effect = lambda webhook, *args, **kwargs: DeliveryResult(
            subscription_id=webhook.id, success=True, status_code=200
        )
        dispatcher = WebhookDispatcher(storage, deliverer=deliverer)

        await dispatcher.dispatch("goal.achieved", {"b": 1, "a": "é"})

        bodies = {call.kwargs["body"] for call in deliverer.deliver.await_args_list}
        assert bodies == {serialize_payload({"b": 1, "a": "é"})}

    @pytest.mark.asyncio
    async def test_deliveries_log_under_event_context(self, storage, make_webhook):
        """Records emitted during fan-out carry the event kind and source."""
        await storage.store_webhook(make_webhook())
        seen: list[dict] = []

        async def deliver(webhook, event_type, payload, **kwargs):
            seen.append(structlog.contextvars.get_contextvars())
            return DeliveryResult(subscription_id=webhook.id, success=True, status_code=200)

        deliverer = AsyncMock(spec=WebhookDeliverer)
        deliverer.deliver.side_effect = deliver
        dispatcher = WebhookDispatcher(storage, deliverer=deliverer)

        await dispatcher.dispatch("goal.achieved", {}, source="scheduler")

        (context,) = seen
        assert context["event_type"] == "goal.achieved"
        assert context["source"] == "scheduler"
        assert "event_type" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_dispatch(self, storage, make_webhook, deliverer):
        """A failing delivery log store is counted and otherwise ignored."""
        webhook = make_webhook(failure_count=2)
        await storage.store_webhook(webhook)
        storage.log_delivery = AsyncMock(side_effect=StorageError("disk full"))
        dispatcher = WebhookDispatcher(storage, deliverer=deliverer)

        summary = await dispatcher.dispatch("goal.achieved", {})

        assert summary.delivered == 1
        assert dispatcher.auditor.write_failures == 1
        assert (await storage.get_webhook(webhook.id)).failure_count == 0

    @pytest.mark.asyncio
    async def test_health_update_failure_keeps_result(self, make_webhook, deliverer):
        """A storage error while updating health does not change the outcome."""
        webhook = make_webhook()
        storage = AsyncMock()
        storage.get_webhooks_for_event = AsyncMock(return_value=[webhook])
        storage.log_delivery = AsyncMock(return_value="dlv_1")
        storage.record_delivery_success = AsyncMock(side_effect=StorageError("locked"))
        dispatcher = WebhookDispatcher(storage, deliverer=deliverer)

        summary = await dispatcher.dispatch("goal.achieved", {})

        assert summary.delivered == 1
        storage.record_delivery_success.assert_awaited_once_with(webhook.id)

    @pytest.mark.asyncio
    async def test_lookup_passes_filters(self, make_webhook, deliverer):
        """Storage is queried with the event kind and owner filter."""
        storage = AsyncMock()
        storage.get_webhooks_for_event = AsyncMock(return_value=[])
        dispatcher = WebhookDispatcher(storage, deliverer=deliverer)

        await dispatcher.dispatch("user.updated", {"id": 1}, user_id="user_9", source="app")

        storage.get_webhooks_for_event.assert_awaited_once_with(
            event_type="user.updated",
            user_id="user_9",
        )

    @pytest.mark.asyncio
    async def test_dispatch_webhook_event_helper(self, storage):
        """dispatch_webhook_event builds a default dispatcher over storage."""
        summary = await dispatch_webhook_event(storage, "goal.achieved", {"a": 1})

        assert summary.event_type == "goal.achieved"
        assert summary.total == 0


class TestDeliveryAuditor:
    """Tests for the delivery log writer."""

    @pytest.mark.asyncio
    async def test_record_success(self, storage):
        """record returns True and appends the entry."""
        auditor = DeliveryAuditor(storage)
        entry = DeliveryLogEntry(subscription_id="whk_1", event_type="goal.achieved", success=True)

        assert await auditor.record(entry) is True
        assert storage.deliveries == [entry]
        assert auditor.write_failures == 0

    @pytest.mark.asyncio
    async def test_record_swallows_errors(self):
        """record returns False instead of raising when the store fails."""
        storage = AsyncMock()
        storage.log_delivery = AsyncMock(side_effect=RuntimeError("gone"))
        auditor = DeliveryAuditor(storage)
        entry = DeliveryLogEntry(subscription_id="whk_1", event_type="goal.achieved")

        assert await auditor.record(entry) is False
        assert auditor.write_failures == 1
