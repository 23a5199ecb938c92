"""
tests/test_audit.py -- Audit trail: store, recorder and middleware.

Coverage:
  - AuditStore: append-only insert, newest-first listing, count
  - AuditRecorder: writes off the request path; a failed write is logged, not raised
  - audit_requests middleware: records method, URL with query, status, caller
    and IP for gated routes; skips pre-auth routes; records rejected requests
    without an identity; a closed recorder drops the entry, not the response
  - GET /api/v1/audit-logs: admin only, paginated

Each test that inspects middleware output swaps in a fresh recorder and
close()s it before reading, so every queued write has landed.
"""

from __future__ import annotations

import logging
import uuid
from unittest.mock import MagicMock

import pytest

from api.main import app
from audit.models import AuditEntry
from audit.recorder import AuditRecorder
from audit.store import AuditStore


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def memory_store():
    # Named shared-memory DB so the recorder's worker thread sees the same schema.
    s = AuditStore(f"sqlite:///file:test_audit_mem_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield s
    s.close()


@pytest.fixture
def recorded(api):
    """Route requests through a fresh recorder; call the yielded function to drain it.

    The module's recorder is drained first so writes queued by earlier tests
    cannot land inside this test's window. drain() returns the entries
    written since the fixture started, oldest first.
    """
    app.state.audit_recorder.close()
    baseline = api.audit_store.count()
    recorder = AuditRecorder(api.audit_store, max_workers=1)
    app.state.audit_recorder = recorder

    def drain() -> list[AuditEntry]:
        recorder.close()
        new = api.audit_store.count() - baseline
        return list(reversed(api.audit_store.list_entries(limit=new))) if new else []

    yield drain
    recorder.close()
    api.audit_recorder = AuditRecorder(api.audit_store, max_workers=1)
    app.state.audit_recorder = api.audit_recorder


class TestAuditStore:
    def test_insert_and_list_newest_first(self, memory_store: AuditStore) -> None:
        for status in (200, 201, 404):
            memory_store.insert(AuditEntry(method="GET", url="/api/v1/users", status=status, user_id=1, ip="1.2.3.4"))
        entries = memory_store.list_entries()
        assert [e.status for e in entries] == [404, 201, 200]
        assert memory_store.count() == 3
        assert entries[0].created_at is not None

    def test_user_id_may_be_null(self, memory_store: AuditStore) -> None:
        memory_store.insert(AuditEntry(method="GET", url="/api/v1/users", status=401))
        assert memory_store.list_entries()[0].user_id is None

    def test_pagination(self, memory_store: AuditStore) -> None:
        for i in range(5):
            memory_store.insert(AuditEntry(method="GET", url=f"/api/v1/x/{i}", status=200))
        page = memory_store.list_entries(limit=2, offset=2)
        assert [e.url for e in page] == ["/api/v1/x/2", "/api/v1/x/1"]


class TestAuditRecorder:
    def test_record_writes_in_background(self, memory_store: AuditStore) -> None:
        recorder = AuditRecorder(memory_store)
        future = recorder.record(AuditEntry(method="POST", url="/api/v1/roles", status=201, user_id=3))
        assert future.result(timeout=5) == 1
        recorder.close()
        assert memory_store.count() == 1

    def test_failed_write_is_logged_not_raised(self, caplog) -> None:
        broken = MagicMock(spec=AuditStore)
        broken.insert.side_effect = RuntimeError("disk full")
        recorder = AuditRecorder(broken)
        with caplog.at_level(logging.ERROR, logger="blueink.audit"):
            future = recorder.record(AuditEntry(method="GET", url="/api/v1/users", status=200))
            recorder.close()
        assert isinstance(future.exception(), RuntimeError)
        assert "Audit write failed" in caplog.text


class TestAuditMiddleware:
    def test_gated_request_is_recorded(self, client, make_user, recorded) -> None:
        uid, token = make_user()
        client.get("/api/v1/users", params={"page": 2, "limit": 5}, headers=_bearer(token))
        entries = recorded()
        assert len(entries) == 1
        entry = entries[0]
        assert entry.method == "GET"
        assert entry.url == "/api/v1/users?page=2&limit=5"
        assert entry.status == 200
        assert entry.user_id == uid
        assert entry.ip == "testclient"

    def test_rejected_request_recorded_without_identity(self, client, recorded) -> None:
        client.get("/api/v1/users")
        entries = recorded()
        assert [(e.status, e.user_id) for e in entries] == [(401, None)]

    def test_forbidden_request_keeps_identity(self, client, make_user, recorded) -> None:
        uid, token = make_user()
        client.get("/api/v1/roles", headers=_bearer(token))
        entries = recorded()
        assert [(e.status, e.user_id) for e in entries] == [(403, uid)]

    def test_csrf_rejection_stops_before_audit(self, client, make_user, recorded) -> None:
        _uid, token = make_user(admin=True)
        resp = client.post("/api/v1/roles", json={"name": "x"}, headers=_bearer(token))
        assert resp.status_code == 403
        assert recorded() == []

    @pytest.mark.parametrize("path", ["/api/v1/health", "/api/v1/captcha", "/"])
    def test_unaudited_paths(self, client, recorded, path: str) -> None:
        assert client.get(path).status_code == 200
        assert recorded() == []

    def test_unknown_api_path_is_audited(self, client, recorded) -> None:
        assert client.get("/api/v1/no-such-route").status_code == 404
        assert [e.status for e in recorded()] == [404]

    def test_closed_recorder_does_not_fail_response(self, client, make_user, recorded, caplog) -> None:
        _uid, token = make_user()
        recorded()  # shuts the executor down, as the lifespan does on exit
        with caplog.at_level(logging.WARNING, logger="blueink.api"):
            resp = client.get("/api/v1/users", headers=_bearer(token))
        assert resp.status_code == 200
        assert "Audit entry dropped" in caplog.text

    def test_login_is_not_audited(self, client, captcha_fields, recorded) -> None:
        client.post("/api/v1/auth/login", json={"email": "a@blueink.io", "password": "x", **captcha_fields()})
        assert recorded() == []


class TestAuditLogEndpoint:
    def test_admin_lists_entries(self, client, api, make_user) -> None:
        api.audit_store.insert(AuditEntry(method="DELETE", url="/api/v1/users/9", status=204, user_id=1))
        _aid, token = make_user(admin=True)
        resp = client.get("/api/v1/audit-logs", params={"limit": 1}, headers=_bearer(token))
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["meta"]["limit"] == 1
        assert body["meta"]["total"] >= 1
        assert len(body["data"]) == 1
        assert {"id", "user_id", "method", "url", "status", "ip", "created_at"} <= set(body["data"][0])

    def test_customer_forbidden(self, client, make_user) -> None:
        _uid, token = make_user()
        assert client.get("/api/v1/audit-logs", headers=_bearer(token)).status_code == 403
