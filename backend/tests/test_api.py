from __future__ import annotations

import json

import httpx
import pytest
import pytest_asyncio

from pulsewatch.main import app
from pulsewatch.services.checker import checker_service
from pulsewatch.services.state import monitor_state_store


@pytest_asyncio.fixture
async def client(db):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


@pytest.fixture
def target_up(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        checker_service, "transport", httpx.MockTransport(lambda request: httpx.Response(200, text="ok"))
    )


async def _create_passive(client: httpx.AsyncClient, name: str = "Relay", **fields) -> dict:
    payload = {"name": name, "check_type": "passive_listen", "server_names": "HK-1", "chat_id": "-100"}
    payload.update(fields)
    response = await client.post("/api/monitors", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_health(client: httpx.AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_create_http_monitor_runs_immediate_probe(client: httpx.AsyncClient, target_up: None) -> None:
    response = await client.post(
        "/api/monitors",
        json={
            "name": "Homepage",
            "url": "https://example.com",
            "check_interval": 5,
            "check_interval_max": 10,
            "webhook_body": '{"text": "{{monitor_name}} is {{status}}"}',
        },
    )

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["check_type"] == "http"
    assert data["is_active"] is True
    assert data["webhook_body"] == {"text": "{{monitor_name}} is {{status}}"}
    assert data["latest_check"]["status"] == "up"
    assert data["latest_check"]["status_code"] == 200


@pytest.mark.asyncio
async def test_create_passive_monitor_is_not_probed(client: httpx.AsyncClient) -> None:
    data = await _create_passive(client)
    assert data["url"] == ""
    assert data["latest_check"] is None


@pytest.mark.asyncio
async def test_create_rejects_missing_url_and_bad_json(client: httpx.AsyncClient) -> None:
    assert (await client.post("/api/monitors", json={"name": "x", "check_type": "tcp"})).status_code == 422
    response = await client.post(
        "/api/monitors", json={"name": "x", "url": "https://a.example", "webhook_headers": "{nope"}
    )
    assert response.status_code == 422
    response = await client.post(
        "/api/monitors", json={"name": "x", "url": "https://a.example", "webhook_headers": {"X-Team": "运维"}}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_monitor_is_structured_404(client: httpx.AsyncClient) -> None:
    response = await client.get("/api/monitors/does-not-exist")
    assert response.status_code == 404
    assert response.json()["error"] == "unknown_target"


@pytest.mark.asyncio
async def test_list_and_reorder(client: httpx.AsyncClient) -> None:
    first = await _create_passive(client, "First")
    second = await _create_passive(client, "Second")

    listed = (await client.get("/api/monitors")).json()
    assert [m["name"] for m in listed] == ["First", "Second"]

    response = await client.put("/api/monitors/reorder", json={"ids": [second["id"], first["id"]]})
    assert response.status_code == 200

    listed = (await client.get("/api/monitors")).json()
    assert [m["name"] for m in listed] == ["Second", "First"]

    response = await client.put("/api/monitors/reorder", json={"ids": ["missing"]})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_resets_cached_interval(client: httpx.AsyncClient) -> None:
    monitor = await _create_passive(client)
    monitor_state_store.get(monitor["id"]).next_interval = 9

    response = await client.put(f"/api/monitors/{monitor['id']}", json={"name": "Renamed"})

    assert response.status_code == 200
    assert response.json()["name"] == "Renamed"
    assert monitor_state_store.get(monitor["id"]).next_interval is None


@pytest.mark.asyncio
async def test_update_cannot_clear_url_of_active_monitor(client: httpx.AsyncClient, target_up: None) -> None:
    created = (await client.post("/api/monitors", json={"name": "Site", "url": "https://a.example"})).json()

    response = await client.put(f"/api/monitors/{created['id']}", json={"url": ""})

    assert response.status_code == 400
    assert response.json()["error"] == "configuration_invalid"


@pytest.mark.asyncio
async def test_delete_cascades_and_drops_state(client: httpx.AsyncClient, target_up: None) -> None:
    created = (await client.post("/api/monitors", json={"name": "Site", "url": "https://a.example"})).json()
    monitor_state_store.get(created["id"])

    assert (await client.delete(f"/api/monitors/{created['id']}")).status_code == 204
    assert created["id"] not in monitor_state_store
    assert (await client.get(f"/api/monitors/{created['id']}/checks")).status_code == 404


@pytest.mark.asyncio
async def test_probe_now_history_and_stats(client: httpx.AsyncClient, target_up: None) -> None:
    created = (await client.post("/api/monitors", json={"name": "Site", "url": "https://a.example"})).json()

    response = await client.post(f"/api/monitors/{created['id']}/check")
    assert response.status_code == 200
    assert response.json()["status"] == "up"

    checks = (await client.get(f"/api/monitors/{created['id']}/checks")).json()
    assert len(checks) == 2
    assert checks[0]["id"] > checks[1]["id"]

    stats = (await client.get(f"/api/monitors/{created['id']}/stats")).json()
    assert stats["total_checks"] == 2
    assert stats["uptime_percent"] == 100.0

    assert (await client.get(f"/api/monitors/{created['id']}/checks?limit=101")).status_code == 422
    assert (await client.get(f"/api/monitors/{created['id']}/incidents")).json() == []


@pytest.mark.asyncio
async def test_probe_now_rejects_passive_monitor(client: httpx.AsyncClient) -> None:
    monitor = await _create_passive(client)
    response = await client.post(f"/api/monitors/{monitor['id']}/check")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_test_notification_reports_delivery(client: httpx.AsyncClient, webhook) -> None:
    monitor = await _create_passive(client, webhook_url="https://hooks.example.com/x")

    response = await client.post(f"/api/monitors/{monitor['id']}/test-notification")

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert json.loads(webhook.requests[0].content)["status"] == "test"

    webhook.status_code = 500
    response = await client.post(f"/api/monitors/{monitor['id']}/test-notification")
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_status_servers_view(client: httpx.AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    document = {
        "status": "success",
        "data": [{"uuid": "1", "name": "HK-1", "region": "HK", "updated_at": "2000-01-01T00:00:00Z"}],
    }
    monkeypatch.setattr(
        checker_service, "transport", httpx.MockTransport(lambda request: httpx.Response(200, json=document))
    )
    created = (
        await client.post(
            "/api/monitors",
            json={"name": "Nodes", "check_type": "status_api", "url": "https://status.example.com/api"},
        )
    ).json()

    servers = (await client.get(f"/api/monitors/{created['id']}/status-servers")).json()

    assert servers[0]["name"] == "HK-1"
    assert servers[0]["is_online"] is False


@pytest.mark.asyncio
async def test_status_notify_end_to_end(client: httpx.AsyncClient) -> None:
    created = (
        await client.post(
            "/api/monitors",
            json={
                "name": "Nodes",
                "check_type": "status_api",
                "url": "https://status.example.com/api",
                "server_names": "HK-1",
                "is_active": False,
            },
        )
    ).json()
    await client.put(f"/api/monitors/{created['id']}", json={"is_active": True})

    disabled = await client.post("/api/status-notify", json={"message": "HK-1 offline", "id": 1})
    assert disabled.json()["reason"] == "disabled"

    response = await client.put("/api/settings/status-notify", json={"enabled": True, "chat_id": "-42"})
    assert response.json() == {"enabled": True, "chat_id": "-42"}

    accepted = await client.post(
        "/api/status-notify",
        json={"title": "Node alert", "message": "HK-1 offline", "id": 2, "time": "2024-01-01T00:00:00Z"},
    )
    body = accepted.json()
    assert body["accepted"] is True
    assert body["status"] == "down"
    assert body["monitor_id"] == created["id"]

    incidents = (await client.get(f"/api/monitors/{created['id']}/incidents")).json()
    assert len(incidents) == 1


@pytest.mark.asyncio
async def test_trigger_runs_due_checks(client: httpx.AsyncClient, target_up: None) -> None:
    await _create_passive(client)
    created = (await client.post("/api/monitors", json={"name": "Site", "url": "https://a.example"})).json()
    assert created["latest_check"]["status"] == "up"

    # Just probed on creation, so nothing is due yet
    assert (await client.post("/api/trigger")).json() == {"checked": 0}


@pytest.mark.asyncio
async def test_telegram_settings_without_token(client: httpx.AsyncClient) -> None:
    response = await client.get("/api/settings/telegram")
    assert response.json() == {"configured": False, "connected": False, "token_preview": None}

    response = await client.post("/api/settings/telegram/test", json={"chat_id": "-1"})
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_telegram_rejected_token_is_502(client: httpx.AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    from pulsewatch.services.telegram import telegram_service

    monkeypatch.setattr(
        telegram_service,
        "transport",
        httpx.MockTransport(lambda request: httpx.Response(401, json={"ok": False, "description": "Unauthorized"})),
    )

    response = await client.put("/api/settings/telegram", json={"token": "bad"})

    assert response.status_code == 502
    assert response.json() == {"error": "chat_transport_error", "detail": "Unauthorized"}
