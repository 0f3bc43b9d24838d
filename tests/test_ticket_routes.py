from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.main import create_app, install_ticket_services
from app.tickets.store import InMemoryTicketStore

REPORTER = {"Authorization": "Bearer reporter-token"}
HANDLER = {"Authorization": "Bearer handler-token"}
ADMIN = {"Authorization": "Bearer admin-token"}

DRAFT = {
    "description": "Leak in room 4",
    "location": {"floor": "2", "area": "Room 4"},
    "priority": "IMPORTANT",
}


@pytest.fixture
def ticket_client():
    app = create_app()
    with TestClient(app) as client:
        install_ticket_services(app, InMemoryTicketStore(), Settings(_env_file=None))
        yield client


def _create(client) -> dict:
    response = client.post("/tickets", json=DRAFT, headers=REPORTER)
    assert response.status_code == 201
    return response.json()


def test_ping_is_public(ticket_client):
    assert ticket_client.get("/ping").json() == {"status": "ok"}
    assert ticket_client.get("/ping/ready").json() == {"status": "ok"}


def test_ready_reports_503_without_ticket_service():
    client = TestClient(create_app())

    assert client.get("/ping").status_code == 200
    response = client.get("/ping/ready")
    assert response.status_code == 503


def test_ready_reports_503_when_postgres_is_down(ticket_client):
    postgres = MagicMock()
    postgres.test_connection = AsyncMock(side_effect=OSError("connection refused"))
    ticket_client.app.state.postgres = postgres

    response = ticket_client.get("/ping/ready")

    assert response.status_code == 503
    postgres.test_connection.assert_awaited_once()
    ticket_client.app.state.postgres = None


def test_ticket_endpoints_require_identity(ticket_client):
    assert ticket_client.get("/tickets/mine").status_code == 401
    response = ticket_client.get("/tickets/mine", headers={"Authorization": "Bearer forged"})
    assert response.status_code == 401


def test_create_ticket_returns_pending_snapshot(ticket_client):
    response = ticket_client.post("/tickets", json=DRAFT, headers=REPORTER)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "PENDING"
    assert body["assignee_id"] is None
    assert body["reporter_id"] == "reporter"
    assert body["version"] == 1
    assert response.headers["ETag"] == '"1"'


def test_create_ticket_rejects_unknown_fields(ticket_client):
    response = ticket_client.post("/tickets", json={**DRAFT, "imagem": "x.png"}, headers=REPORTER)

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_INPUT"


def test_handlers_cannot_create_tickets(ticket_client):
    assert ticket_client.post("/tickets", json=DRAFT, headers=HANDLER).status_code == 403


def test_assume_resolve_flow(ticket_client):
    ticket = _create(ticket_client)

    assumed = ticket_client.post(f"/tickets/{ticket['id']}/assume", headers=HANDLER)
    assert assumed.status_code == 200
    assert assumed.json()["assignee_id"] == "handler"

    second = ticket_client.post(f"/tickets/{ticket['id']}/assume", headers=ADMIN)
    assert second.status_code == 409
    assert second.json()["code"] == "ILLEGAL_TRANSITION"

    forbidden = ticket_client.post(f"/tickets/{ticket['id']}/resolve", json={"description": "x"}, headers=ADMIN)
    assert forbidden.status_code == 403

    resolved = ticket_client.post(
        f"/tickets/{ticket['id']}/resolve", json={"description": "pipe replaced"}, headers=HANDLER
    )
    assert resolved.status_code == 200
    body = resolved.json()
    assert body["status"] == "DONE"
    assert body["resolution"]["resolved_by"] == "handler"


def test_reject_requires_reason(ticket_client):
    ticket = _create(ticket_client)
    ticket_client.post(f"/tickets/{ticket['id']}/assume", headers=HANDLER)

    response = ticket_client.post(f"/tickets/{ticket['id']}/reject", json={"reason": ""}, headers=HANDLER)

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_INPUT"
    current = ticket_client.get(f"/tickets/{ticket['id']}", headers=HANDLER).json()
    assert current["status"] == "IN_PROGRESS"


def test_renounce_and_reject(ticket_client):
    ticket = _create(ticket_client)
    ticket_client.post(f"/tickets/{ticket['id']}/assume", headers=HANDLER)

    renounced = ticket_client.post(f"/tickets/{ticket['id']}/renounce", headers=HANDLER)
    assert renounced.json()["status"] == "PENDING"

    ticket_client.post(f"/tickets/{ticket['id']}/assume", headers=HANDLER)
    rejected = ticket_client.post(
        f"/tickets/{ticket['id']}/reject", json={"reason": "not our building"}, headers=HANDLER
    )
    assert rejected.json()["status"] == "REJECTED"
    assert rejected.json()["rejection_reason"] == "not our building"


def test_if_match_guards_against_stale_writes(ticket_client):
    ticket = _create(ticket_client)
    ticket_client.patch(f"/tickets/{ticket['id']}", json={"priority": "URGENT"}, headers=REPORTER)

    stale = ticket_client.post(f"/tickets/{ticket['id']}/assume", headers={**HANDLER, "If-Match": '"1"'})
    assert stale.status_code == 409
    assert stale.json()["code"] == "VERSION_CONFLICT"

    fresh = ticket_client.post(f"/tickets/{ticket['id']}/assume", headers={**HANDLER, "If-Match": '"2"'})
    assert fresh.status_code == 200
    assert fresh.headers["ETag"] == '"3"'

    garbage = ticket_client.post(f"/tickets/{ticket['id']}/renounce", headers={**HANDLER, "If-Match": "abc"})
    assert garbage.status_code == 400


def test_edit_and_withdraw_only_while_pending(ticket_client):
    ticket = _create(ticket_client)

    edited = ticket_client.patch(
        f"/tickets/{ticket['id']}", json={"description": "Leak near the window"}, headers=REPORTER
    )
    assert edited.status_code == 200
    assert edited.json()["description"] == "Leak near the window"

    empty = ticket_client.patch(f"/tickets/{ticket['id']}", json={}, headers=REPORTER)
    assert empty.status_code == 400

    ticket_client.post(f"/tickets/{ticket['id']}/assume", headers=HANDLER)
    blocked = ticket_client.delete(f"/tickets/{ticket['id']}", headers=REPORTER)
    assert blocked.status_code == 409

    other = _create(ticket_client)
    assert ticket_client.delete(f"/tickets/{other['id']}", headers=REPORTER).status_code == 204
    assert ticket_client.get(f"/tickets/{other['id']}", headers=REPORTER).status_code == 404


def test_projections(ticket_client):
    pending = _create(ticket_client)
    working = _create(ticket_client)
    closed = _create(ticket_client)
    ticket_client.post(f"/tickets/{working['id']}/assume", headers=HANDLER)
    ticket_client.post(f"/tickets/{closed['id']}/assume", headers=HANDLER)
    ticket_client.post(f"/tickets/{closed['id']}/resolve", json={"description": "done"}, headers=HANDLER)

    mine = ticket_client.get("/tickets/mine", headers=REPORTER).json()
    assert {item["id"] for item in mine} == {pending["id"], working["id"], closed["id"]}

    assigned = ticket_client.get("/tickets/assigned", headers=HANDLER).json()
    assert {item["id"] for item in assigned} == {pending["id"], working["id"]}

    in_progress = ticket_client.get("/tickets/assigned", params={"status": "IN_PROGRESS"}, headers=HANDLER).json()
    assert [item["id"] for item in in_progress] == [working["id"]]

    done = ticket_client.get("/tickets/closed", params={"status": "DONE"}, headers=HANDLER).json()
    assert [item["id"] for item in done] == [closed["id"]]

    invalid = ticket_client.get("/tickets/closed", params={"status": "PENDING"}, headers=HANDLER)
    assert invalid.status_code == 400

    assert ticket_client.get("/tickets/assigned", headers=REPORTER).status_code == 403


def test_unknown_ticket_returns_not_found(ticket_client):
    response = ticket_client.post("/tickets/missing/assume", headers=HANDLER)

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_audit_endpoint_lists_events(ticket_client):
    ticket = _create(ticket_client)
    ticket_client.post(f"/tickets/{ticket['id']}/assume", headers=HANDLER)
    service = ticket_client.app.state.ticket_service
    ticket_client.portal.call(service.dispatcher.drain)

    response = ticket_client.get(f"/tickets/{ticket['id']}/audit", headers=HANDLER)

    assert response.status_code == 200
    body = response.json()
    assert [entry["action"] for entry in body] == ["create", "assume"]
    assert body[1]["from_status"] == "PENDING"
    assert body[1]["to_status"] == "IN_PROGRESS"


def test_unconfigured_service_returns_503():
    app = create_app()
    client = TestClient(app)

    response = client.post("/tickets", json=DRAFT, headers=REPORTER)

    assert response.status_code == 503


def test_audit_endpoint_hides_unknown_and_withdrawn_tickets(ticket_client):
    missing = ticket_client.get("/tickets/does-not-exist/audit", headers=HANDLER)
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"

    ticket = _create(ticket_client)
    ticket_client.delete(f"/tickets/{ticket['id']}", headers=REPORTER)

    withdrawn = ticket_client.get(f"/tickets/{ticket['id']}/audit", headers=HANDLER)
    assert withdrawn.status_code == 404


def test_edit_checks_status_before_payload(ticket_client):
    ticket = _create(ticket_client)
    ticket_client.post(f"/tickets/{ticket['id']}/assume", headers=HANDLER)
    ticket_client.post(f"/tickets/{ticket['id']}/resolve", json={"description": "done"}, headers=HANDLER)

    response = ticket_client.patch(f"/tickets/{ticket['id']}", json={}, headers=REPORTER)

    assert response.status_code == 409
    assert response.json()["code"] == "ILLEGAL_TRANSITION"

    other = _create(ticket_client)
    invalid = ticket_client.patch(f"/tickets/{other['id']}", json={"status": "DONE"}, headers=REPORTER)
    assert invalid.status_code == 400
    assert invalid.json()["code"] == "INVALID_INPUT"


def test_webhook_deliveries_share_one_client():
    received: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content)["action"])
        return httpx.Response(202)

    settings = Settings(_env_file=None, notification_webhook_url="https://hooks.example.test/tickets")
    app = create_app()
    with TestClient(app) as client:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        service = install_ticket_services(app, InMemoryTicketStore(), settings, http_client=http_client)
        ticket = _create(client)
        client.post(f"/tickets/{ticket['id']}/assume", headers=HANDLER)
        client.portal.call(service.dispatcher.drain)
        client.portal.call(http_client.aclose)

    assert received == ["create", "assume"]


def test_lifespan_closes_webhook_client(monkeypatch):
    settings = Settings(_env_file=None, notification_webhook_url="https://hooks.example.test/tickets")
    monkeypatch.setattr("app.main.get_settings", lambda: settings)

    app = create_app()
    with TestClient(app):
        http_client = app.state.http_client
        assert isinstance(http_client, httpx.AsyncClient)
        assert not http_client.is_closed

    assert http_client.is_closed
