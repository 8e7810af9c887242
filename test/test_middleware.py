"""
Tests for the structured logging middleware and SSE broadcaster
"""

import json
import logging

from hookcms.middleware.logging import RequestIdFilter, StructuredFormatter, request_id_var
from hookcms.services.sse_manager import SSEBroadcaster


class TestStructuredLogging:
    async def test_request_id_is_echoed(self, client):
        response = await client.get("/api/v1/ready", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    async def test_request_id_is_generated(self, client):
        response = await client.get("/api/v1/ready")
        assert len(response.headers["X-Request-ID"]) == 36

    async def test_access_log_level_follows_status(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="hookcms.access"):
            await client.get("/api/v1/ready")
            await client.get("/api/v1/users/me")

        levels = {record.status_code: record.levelno for record in caplog.records if record.name == "hookcms.access"}
        assert levels == {200: logging.INFO, 401: logging.WARNING}

    def test_formatter_emits_json_with_extras(self):
        record = logging.LogRecord("hookcms.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        record.extension = "seo"
        token = request_id_var.set("abc")
        try:
            RequestIdFilter().filter(record)
        finally:
            request_id_var.reset(token)

        data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "hello world"
        assert data["request_id"] == "abc"
        assert data["extension"] == "seo"
        assert data["level"] == "INFO"


class TestSSEBroadcaster:
    async def test_publish_reaches_subscribers(self):
        broadcaster = SSEBroadcaster()
        first = await broadcaster.subscribe()
        second = await broadcaster.subscribe()

        assert await broadcaster.publish("job_update", {"id": 1}) == 2
        event = first.get_nowait()
        assert (event["type"], event["data"]) == ("job_update", {"id": 1})
        assert second.qsize() == 1

    async def test_unsubscribe(self):
        broadcaster = SSEBroadcaster()
        queue = await broadcaster.subscribe()
        await broadcaster.unsubscribe(queue)

        assert broadcaster.subscriber_count() == 0
        assert await broadcaster.publish("job_update", {}) == 0

    async def test_full_queue_drops_events(self):
        broadcaster = SSEBroadcaster(max_queue_size=1)
        queue = await broadcaster.subscribe()

        assert await broadcaster.publish("a", {}) == 1
        assert await broadcaster.publish("b", {}) == 0
        assert queue.get_nowait()["type"] == "a"
        assert queue.empty()
