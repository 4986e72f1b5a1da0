"""
Unit tests for the ShelfSync SDK client.

The server is replaced by an httpx.MockTransport, so these tests cover
request shapes, response parsing and error mapping only.
"""

import json

import httpx
import pytest

from sdk.shelfsync_sdk import (
    BatchRejectedError,
    ConnectionError,
    ServerError,
    SyncClient,
    SyncOperation,
)


def change(event_id):
    return {
        "eventId": str(event_id),
        "entityType": "setting",
        "operation": "upsert",
        "payload": {"key": "theme", "value": "dark"},
        "serverTimestamp": "2024-05-01T10:00:00.000Z",
    }


class TestSyncOperation:
    """Tests for SyncOperation."""

    def test_create_assigns_op_id_once(self):
        op = SyncOperation.create("tag", "upsert", {"name": "RPG"})

        assert op.op_id
        assert op.to_dict()["opId"] == op.op_id
        assert op.to_dict()["opId"] == op.to_dict()["opId"]
        assert SyncOperation.create("tag", "upsert", {"name": "RPG"}).op_id != op.op_id

    def test_create_rejects_unknown_values(self):
        with pytest.raises(ValueError):
            SyncOperation.create("platform", "upsert", {})
        with pytest.raises(ValueError):
            SyncOperation.create("tag", "patch", {})


class TestSyncClient:
    """Tests for SyncClient against a mock transport."""

    @pytest.mark.asyncio
    async def test_push(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            op_ids = [o["opId"] for o in seen["body"]["operations"]]
            return httpx.Response(
                200,
                json={
                    "results": [
                        {"opId": op_ids[0], "status": "applied", "normalizedPayload": {"id": 1}},
                        {"opId": op_ids[1], "status": "duplicate"},
                        {"opId": op_ids[2], "status": "failed", "message": "Invalid tag payload id."},
                    ],
                    "cursor": "7",
                },
            )

        ops = [SyncOperation.create("tag", "upsert", {"name": str(i)}) for i in range(3)]
        async with SyncClient("http://sync.test", transport=httpx.MockTransport(handler)) as client:
            response = await client.push(ops)

        assert seen["path"] == "/v1/sync/push"
        assert seen["body"]["operations"][0]["entityType"] == "tag"
        assert response.cursor == "7"
        assert response.settled_op_ids() == [ops[0].op_id, ops[1].op_id]
        assert response.failed()[0].message == "Invalid tag payload id."

    @pytest.mark.asyncio
    async def test_pull_all_pages_until_empty(self):
        pages = {
            "0": {"cursor": "2", "changes": [change(1), change(2)]},
            "2": {"cursor": "3", "changes": [change(3)]},
            "3": {"cursor": "3", "changes": []},
        }
        requested = []

        def handler(request):
            cursor = json.loads(request.content)["cursor"]
            requested.append(cursor)
            return httpx.Response(200, json=pages[cursor])

        async with SyncClient("http://sync.test", transport=httpx.MockTransport(handler)) as client:
            result = await client.pull_all("0")

        assert requested == ["0", "2", "3"]
        assert result.cursor == "3"
        assert [c.event_id for c in result.changes] == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_rejected_batch(self):
        def handler(request):
            return httpx.Response(400, json={"error": "Invalid sync push payload."})

        async with SyncClient("http://sync.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(BatchRejectedError) as exc_info:
                await client.push([])

        assert exc_info.value.server_error == "Invalid sync push payload."
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self):
        def handler(request):
            return httpx.Response(500, json={"error": "Unable to process sync push."})

        async with SyncClient("http://sync.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ServerError) as exc_info:
                await client.push([])

        assert exc_info.value.status_code == 500
        assert exc_info.value.retryable is True
        assert exc_info.value.code == "SERVER_ERROR"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with SyncClient("http://sync.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ConnectionError) as exc_info:
                await client.pull("0")

        assert exc_info.value.details["address"] == "http://sync.test"
