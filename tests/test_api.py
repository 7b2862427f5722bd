"""
Tests for the HTTP surface: ingress, health, metrics and admin endpoints.
"""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from event_gateway.core.config import Settings
from event_gateway.main import create_app
from event_gateway.models.events import DeliveryStatus, Event
from event_gateway.services.gateway import Gateway
from event_gateway.sinks.journal import MemoryJournal

from fake_sinks import GatedSink

JSON = {"Content-Type": "application/json"}


class TestPublish:
    """Tests for POST /events/{topic}."""

    async def test_accepts_and_delivers_once(self, client, gateway):
        body = b'{"id": 42}'

        response = await client.post("/events/orders", content=body, headers=JSON)

        assert response.status_code == 202
        data = response.json()
        assert data["topic"] == "orders"
        event_id = data["eventId"]

        await gateway.broker.join()
        sink = gateway.sinks["orders-queue"]
        assert sink.enqueue_calls == 1
        assert event_id in sink
        stored = Event.from_envelope(sink.messages[0])
        assert stored.payload == body
        assert stored.content_type == "application/json"
        assert gateway.pipeline.outcome_for(event_id, "orders-queue").status == DeliveryStatus.ACKED

    async def test_each_request_gets_a_new_event_id(self, client, gateway):
        first = await client.post("/events/orders", content=b"{}", headers=JSON)
        second = await client.post("/events/orders", content=b"{}", headers=JSON)

        assert first.json()["eventId"] != second.json()["eventId"]

    async def test_content_type_parameters_are_ignored(self, client):
        response = await client.post(
            "/events/orders",
            content=b"{}",
            headers={"Content-Type": "application/json; charset=utf-8"},
        )

        assert response.status_code == 202

    async def test_empty_body_is_accepted(self, client):
        response = await client.post(
            "/events/orders", content=b"", headers={"Content-Type": "text/plain"}
        )

        assert response.status_code == 202

    async def test_oversized_body_is_rejected_before_publish(self, client, gateway):
        body = b"x" * (2 * 1024 * 1024)

        with patch.object(gateway.broker, "publish", new_callable=AsyncMock) as publish:
            response = await client.post("/events/orders", content=body, headers=JSON)

        assert response.status_code == 413
        publish.assert_not_called()
        assert gateway.sinks["orders-queue"].enqueue_calls == 0

    async def test_oversized_streamed_body_is_rejected(self, client, gateway):
        async def chunks():
            for _ in range(3):
                yield b"x" * (512 * 1024)

        with patch.object(gateway.broker, "publish", new_callable=AsyncMock) as publish:
            response = await client.post(
                "/events/orders",
                content=chunks(),
                headers={"Content-Type": "application/octet-stream"},
            )

        assert response.status_code == 413
        publish.assert_not_called()

    async def test_invalid_content_length(self, client):
        response = await client.post(
            "/events/orders",
            content=b"{}",
            headers={"Content-Type": "application/json", "Content-Length": "abc"},
        )

        assert response.status_code == 400

    async def test_unknown_topic(self, client):
        response = await client.post("/events/payments", content=b"{}", headers=JSON)

        assert response.status_code == 400
        assert "payments" in response.json()["detail"]

    @pytest.mark.parametrize("content_type", ["image/png", "application/xml"])
    async def test_unsupported_media_type(self, client, content_type):
        response = await client.post(
            "/events/orders", content=b"{}", headers={"Content-Type": content_type}
        )

        assert response.status_code == 415

    async def test_missing_content_type(self, client):
        response = await client.post("/events/orders", content=b"{}")

        assert response.status_code == 415

    async def test_internal_failure_returns_500(self, client, gateway):
        with patch.object(
            gateway.broker, "publish", new=AsyncMock(side_effect=RuntimeError("boom"))
        ):
            response = await client.post("/events/orders", content=b"{}", headers=JSON)

        assert response.status_code == 500
        assert response.json()["detail"] == "Internal server error"

    async def test_stopped_broker_returns_503(self, client, gateway):
        await gateway.broker.stop()

        response = await client.post("/events/orders", content=b"{}", headers=JSON)

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"


class TestPublishWithHeader:
    """Tests for POST /events with X-Event-Topic."""

    async def test_topic_from_header(self, client):
        response = await client.post(
            "/events",
            content=b"{}",
            headers={"Content-Type": "application/json", "X-Event-Topic": "orders"},
        )

        assert response.status_code == 202
        assert response.json()["topic"] == "orders"

    async def test_missing_topic_header(self, client):
        response = await client.post("/events", content=b"{}", headers=JSON)

        assert response.status_code == 400


class TestBackpressure:
    """503 + Retry-After when the pending buffer is full."""

    @pytest.fixture
    async def gated(self):
        settings = Settings(
            _env_file=None,
            subscriptions={"orders": ["orders-queue"]},
            high_water_mark=2,
            dispatch_workers=1,
            retry_after_seconds=3,
        )
        gateway = Gateway(settings, sink_factory=lambda queue, _settings: GatedSink(queue))
        await gateway.start()
        app = create_app(settings, gateway=gateway)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac, gateway
        gateway.sinks["orders-queue"].gate.set()
        await gateway.stop()

    async def test_full_buffer_returns_503_with_retry_after(self, gated):
        client, gateway = gated
        sink = gateway.sinks["orders-queue"]

        # Let the single worker pick up one event and block on the gate
        await gateway.broker.publish(Event(topic="orders", payload=b"{}"))
        await asyncio.sleep(0.01)
        assert gateway.broker.pending == 0
        for _ in range(2):
            await gateway.broker.publish(Event(topic="orders", payload=b"{}"))
        assert gateway.broker.pending == 2

        response = await client.post("/events/orders", content=b"{}", headers=JSON)

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "3"
        assert "eventId" not in response.json()

        sink.gate.set()
        await gateway.broker.join()
        # Only the three admitted events reach the queue
        assert sink.count == 3


class TestHealthAndMetrics:
    """Tests for /health, /metrics and /."""

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "brokerRunning": True,
            "pendingEvents": 0,
            "highWaterMark": 10,
            "topics": ["orders"],
        }

    async def test_health_degraded_after_stop(self, client, gateway):
        await gateway.broker.stop()

        response = await client.get("/health")

        assert response.json()["status"] == "degraded"

    async def test_metrics(self, client, gateway):
        await client.post("/events/orders", content=b"{}", headers=JSON)
        await gateway.broker.join()

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "gateway_ingress_requests_total" in response.text
        assert "gateway_delivery_outcomes_total" in response.text

    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "event-gateway"


class TestAdmin:
    """Tests for /v1/admin/subscriptions."""

    async def test_list(self, client):
        response = await client.get("/v1/admin/subscriptions")

        assert response.status_code == 200
        assert response.json() == {
            "count": 1,
            "subscriptions": [
                {"topic": "orders", "sinkId": "orders-queue", "maxAttempts": 3}
            ],
        }

    async def test_create_then_publish(self, client, gateway):
        response = await client.post(
            "/v1/admin/subscriptions",
            json={"topic": "payments", "queue": "payments-queue", "maxAttempts": 2},
        )

        assert response.status_code == 201
        assert response.json() == {
            "topic": "payments",
            "sinkId": "payments-queue",
            "maxAttempts": 2,
        }
        assert gateway.sinks["payments-queue"].is_connected

        published = await client.post("/events/payments", content=b"{}", headers=JSON)
        assert published.status_code == 202
        await gateway.broker.join()
        assert gateway.sinks["payments-queue"].count == 1

    async def test_create_rejects_invalid_body(self, client):
        response = await client.post(
            "/v1/admin/subscriptions", json={"topic": "", "queue": "q"}
        )

        assert response.status_code == 422

    async def test_delete(self, client):
        response = await client.delete("/v1/admin/subscriptions/orders/orders-queue")
        assert response.status_code == 204

        published = await client.post("/events/orders", content=b"{}", headers=JSON)
        assert published.status_code == 400

        again = await client.delete("/v1/admin/subscriptions/orders/orders-queue")
        assert again.status_code == 404


class TestJournaledIngress:
    """Ingress in front of a journaled broker."""

    @pytest.fixture
    async def journaled(self, settings):
        journal = MemoryJournal()
        gateway = Gateway(settings, journal_factory=lambda _settings: journal)
        await gateway.start()
        app = create_app(settings, gateway=gateway)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac, gateway, journal
        await gateway.stop()

    async def test_accepted_event_is_delivered_and_released(self, journaled):
        client, gateway, journal = journaled

        response = await client.post("/events/orders", content=b"{}", headers=JSON)

        assert response.status_code == 202
        await gateway.broker.join()
        assert response.json()["eventId"] in gateway.sinks["orders-queue"]
        assert journal.count == 0

    async def test_unavailable_journal_returns_503(self, journaled):
        client, gateway, journal = journaled
        await journal.close()

        response = await client.post("/events/orders", content=b"{}", headers=JSON)

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        await gateway.broker.join()
        assert gateway.sinks["orders-queue"].count == 0
