"""
tests/test_web_app.py — FastAPI endpoints and the WebSocket event stream.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from core.config import GuardConfig, OracleConfig
from pipeline.controller import GuardController
from ui.web_app import create_app


@pytest.fixture()
def controller() -> GuardController:
    return GuardController(GuardConfig(oracle=OracleConfig(reactions_enabled=False)))


@pytest.fixture()
def client(controller: GuardController):
    with TestClient(create_app(controller)) as c:
        yield c


class TestReadEndpoints:

    def test_health(self, client: TestClient) -> None:
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["oracle_backend"] == "rules"
        assert body["state_version"] == 0

    def test_state(self, client: TestClient) -> None:
        body = client.get("/api/state").json()
        assert body["version"] == 0
        assert body["connector"] == "LIVE_TELEMETRY"
        assert body["state"]["axis_1_rpm"] == 1500.0


class TestCommands:

    def test_authorized(self, client: TestClient) -> None:
        resp = client.post("/api/command", json={"command": "set rpm 1800 absolute"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["committed"] is True
        assert body["verdict"]["decision"] == "AUTHORIZED"
        assert body["state"]["axis_1_rpm"] == 1800.0
        assert body["transaction_id"].startswith("tx_")

    def test_denied(self, client: TestClient) -> None:
        body = client.post("/api/command", json={"command": "set torque 900 absolute"}).json()
        assert body["committed"] is False
        assert body["verdict"]["reason"] == "SAFETY_BREACH: RPM forced to 9200 exceeds limit."
        assert body["state_version"] == 0

    def test_admin(self, client: TestClient) -> None:
        body = client.post("/api/admin/command", json={"command": "set torque 900 absolute"}).json()
        assert body["committed"] is True
        assert body["verdict"]["agent_role"] == "ADMIN_OVERRIDE"
        assert all(log["id"].startswith("adm_") for log in body["verdict"]["logs"])

    def test_overflowing_operand_denied(self, client: TestClient) -> None:
        command = "set coolant 1" + "0" * 400 + " absolute"
        resp = client.post("/api/command", json={"command": command})
        assert resp.status_code == 200
        assert resp.json()["committed"] is False
        state = client.get("/api/state")
        assert state.status_code == 200
        assert state.json()["version"] == 0

    @pytest.mark.parametrize("payload"
, [{"command": ""}, {}, {"cmd": "set rpm 1"}])
    def test_rejects_bad_body(self, client: TestClient, payload: dict) -> None:
        assert client.post("/api/command", json=payload).status_code == 422


class TestTelemetry:

    def test_csv_import(self, client: TestClient) -> None:
        body = client.post(
            "/api/telemetry/import", json={"content": "rpm,mystery\n2000,3\n"}
        ).json()
        assert body["applied"] is True
        assert body["mapped"] == {"axis_1_rpm": 2000.0}
        assert body["unmapped"] == ["MYSTERY"]
        assert body["version"] == 1
        assert client.get("/api/state").json()["connector"] == "CSV_IMPORT"

    @pytest.mark.parametrize("cell", ["nan", "inf", "-5"])
    def test_csv_out_of_range_cell_rejected(self, client: TestClient, cell: str) -> None:
        resp = client.post("/api/telemetry/import", json={"content": f"coolant\n{cell}\n"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["applied"] is False
        assert body["rejected"] == ["COOLANT"]
        assert client.get("/api/state").status_code == 200

    def test_csv_refused_merge_is_422(
        self, client: TestClient, controller: GuardController, monkeypatch
    ) -> None:
        monkeypatch.setattr(
            controller, "import_csv", MagicMock(side_effect=ValueError("CSV import refused: x"))
        )
        resp = client.post("/api/telemetry/import", json={"content": "rpm\n2000\n"})
        assert resp.status_code == 422
        assert resp.json()["detail"] == "CSV import refused: x"

    def test_profile(self, client: TestClient) -> None:
        body = client.post("/api/telemetry/profile", json={"profile": "HIGH_LOAD"}).json()
        assert body["state"]["op_mode"] == "HIGH_LOAD"

    def test_unknown_profile(self, client: TestClient) -> None:
        resp = client.post("/api/telemetry/profile", json={"profile": "TURBO"})
        assert resp.status_code == 404


class TestAudit:

    def test_recent_and_limit(self, client: TestClient) -> None:
        for rpm in (1600, 1700, 1800):
            client.post("/api/command", json={"command": f"set rpm {rpm} absolute"})
        records = client.get("/api/audit", params={"limit": 2}).json()
        assert [r["user_prompt"] for r in records] == [
            "set rpm 1800 absolute", "set rpm 1700 absolute",
        ]

    def test_limit_bounds(self, client: TestClient) -> None:
        assert client.get("/api/audit", params={"limit": 0}).status_code == 422

    def test_export(self, client: TestClient) -> None:
        client.post("/api/command", json={"command": "set rpm 1600 absolute"})
        resp = client.get("/api/audit/export")
        assert resp.status_code == 200
        assert "attachment" in resp.headers["content-disposition"]
        assert len(resp.json()) == 1


class TestWebSocket:

    def test_snapshot_then_events(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            first = ws.receive_json()
            assert first["type"] == "snapshot"
            assert first["version"] == 0
            client.post("/api/command", json={"command": "set rpm 1600 absolute"})
            types = {ws.receive_json()["type"] for _ in range(3)}
        assert types == {"committed", "verdict", "audit"}
