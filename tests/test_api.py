"""
tests.test_api
~~~~~~~~~~~~~~

端到端测试 —— 通过 ``TestClient`` 走完整的 WebSocket 中继与 REST 接口。
"""
from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from starlette.testclient import WebSocketTestSession

from app.core.rate_limit import limiter
from app.core.settings import settings
from app.main import app
from app.services.room_code import is_valid_room_code
from conftest import join, make_message, make_presentation


@pytest.fixture()
def client() -> Iterator[TestClient]:
    limiter.reset()
    with TestClient(app) as test_client:
        yield test_client


def receive_until(
    ws: WebSocketTestSession,
    event_type: str,
    match: Callable[[Any], bool] | None = None,
) -> Any:
    """读取下行帧直到出现指定类型（且满足 ``match``），返回其 data。"""
    while True:
        frame = ws.receive_json()
        if frame["type"] == event_type and (match is None or match(frame["data"])):
            return frame["data"]


def hub_roster(client: TestClient, room_code: str) -> list[Any]:
    devices, _ = client.app.state.relay_hub.router.snapshot(room_code)
    return [d.model_dump() for d in devices]


# ── WebSocket 中继 ───────────────────────────────────────────────────

class TestRelayWebSocket:
    """测试演示端与遥控端通过真实端点同步。"""

    def test_presenter_and_controller_session(self, client: TestClient) -> None:
        with client.websocket_connect(settings.WS_PATH) as presenter:
            presenter.send_json(join("ABC123", "P", "presenter"))
            assert presenter.receive_json()["type"] == "room_joined"
            assert presenter.receive_json()["type"] == "devices_updated"

            presenter.send_json(
                make_message("load_presentation", "ABC123", "P", presentation=make_presentation(5)),
            )
            loaded = receive_until(presenter, "presentation_loaded")
            assert loaded["slideNumber"] == 0

            with client.websocket_connect(settings.WS_PATH) as controller:
                controller.send_json(join("ABC123", "C", "controller"))
                joined = receive_until(controller, "room_joined")
                assert [d["id"] for d in joined["devices"]] == ["P", "C"]
                assert receive_until(controller, "presentation_loaded")["slideNumber"] == 0
                assert receive_until(controller, "slide_changed") == {"slideNumber": 0}

                controller.send_json(make_message("slide_change", "ABC123", "C", goto=3))
                assert receive_until(controller, "slide_changed") == {"slideNumber": 3}
                assert receive_until(
                    presenter, "slide_changed", lambda d: d["slideNumber"] == 3,
                ) == {"slideNumber": 3}

            # 遥控端断开后，演示端收到只剩自己的名单
            roster = receive_until(
                presenter, "devices_updated", lambda d: [x["id"] for x in d] == ["P"],
            )
            assert [d["type"] for d in roster] == ["presenter"]

    def test_malformed_frames_are_ignored(self, client: TestClient) -> None:
        with client.websocket_connect(settings.WS_PATH) as ws:
            ws.send_text("definitely not json")
            ws.send_json({"type": "join_room", "roomId": "ABC123"})
            ws.send_json(join("ABC123", "P"))

            # 第一条有效回复就是 join 的结果，前两条没有任何响应
            frame = ws.receive_json()
            assert frame["type"] == "room_joined"
            assert [d["id"] for d in frame["data"]["devices"]] == ["P"]

    def test_binary_garbage_keeps_device_in_room(self, client: TestClient) -> None:
        with client.websocket_connect(settings.WS_PATH) as presenter:
            presenter.send_json(join("ABC123", "P"))
            receive_until(presenter, "devices_updated")

            with client.websocket_connect(settings.WS_PATH) as controller:
                controller.send_json(join("ABC123", "C", "controller"))
                receive_until(controller, "devices_updated")

                controller.send_bytes(b"\x00\x01garbage")
                controller.send_json(make_message("slide_change", "ABC123", "C", direction="next"))
                controller.send_bytes(json.dumps(join("ABC123", "C", "controller")).encode())

                # 二进制垃圾帧被丢弃，连接仍在；二进制 JSON 帧照常处理
                joined = receive_until(controller, "room_joined")
                assert [d["id"] for d in joined["devices"]] == ["P", "C"]

                roster = receive_until(presenter, "devices_updated", lambda d: len(d) == 2)
                assert [d["id"] for d in roster] == ["P", "C"]
                assert [d["id"] for d in hub_roster(client, "ABC123")] == ["P", "C"]

    def test_slide_change_without_presentation_is_silent(self, client: TestClient) -> None:
        with client.websocket_connect(settings.WS_PATH) as ws:
            ws.send_json(join("ABC123", "P"))
            receive_until(ws, "devices_updated")

            ws.send_json(make_message("slide_change", "ABC123", "P", direction="next"))
            ws.send_json(join("ABC123", "P"))

            # 翻页没有产生任何下行帧，下一帧直接是重复 join 的结果
            assert ws.receive_json()["type"] == "room_joined"

        state = app.state.relay_hub.router.store.get("ABC123")
        assert state.presentation is None


# ── REST 接口 ─────────────────────────────────────────────────────────

class TestRoomsApi:
    """测试房间查询与房间码申请。"""

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["environment"] == "test"
        assert body["connections"] == 0

    def test_unknown_room_returns_empty_summary(self, client: TestClient) -> None:
        response = client.get("/api/rooms/NOPE00")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["roomCode"] == "NOPE00"
        assert data["memberCount"] == 0
        assert data["presentationId"] is None
        assert data["controlUrl"].endswith("?room=NOPE00&mode=control")

    def test_malformed_room_code_is_rejected(self, client: TestClient) -> None:
        response = client.get("/api/rooms/abc-12")

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == 400
        assert body["data"] is None

    def test_room_summary_reflects_relay_state(self, client: TestClient) -> None:
        with client.websocket_connect(settings.WS_PATH) as ws:
            ws.send_json(join("ABC123", "P"))
            ws.send_json(
                make_message("load_presentation", "ABC123", "P", presentation=make_presentation(4)),
            )
            ws.send_json(make_message("slide_change", "ABC123", "P", goto=2))
            receive_until(ws, "slide_changed")

            rooms = client.get("/api/rooms").json()["data"]
            summary = client.get("/api/rooms/ABC123").json()["data"]

        assert [r["roomCode"] for r in rooms] == ["ABC123"]
        assert summary["memberCount"] == 1
        assert summary["devices"][0]["id"] == "P"
        assert summary["presentationId"] == "ppt_demo"
        assert summary["slideCount"] == 4
        assert summary["currentSlide"] == 2

    def test_create_room_code(self, client: TestClient) -> None:
        response = client.post("/api/rooms/code")

        assert response.status_code == 200
        data = response.json()["data"]
        assert is_valid_room_code(data["roomCode"])
        assert data["controlUrl"] == (
            f"{settings.PUBLIC_BASE_URL}?room={data['roomCode']}&mode=control"
        )

    def test_rate_limit(self, client: TestClient) -> None:
        statuses = [client.get("/api/rooms/ABC123").status_code for _ in range(12)]

        assert 429 in statuses
