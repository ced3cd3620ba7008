"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 测试用演示文稿、可控时钟、连接句柄与消息构造工具。
"""
from __future__ import annotations

import os
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")  # 激活 .env.test 配置

from app.services.message_router import MessageRouter  # noqa: E402


class FakeClock:
    """手动拨动的单调时钟。"""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeConnection:
    """路由测试用的连接句柄，只需可哈希。"""

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"FakeConnection({self.name})"


def make_presentation(slide_count: int = 5, current_slide: int | None = None, pid: str = "ppt_demo") -> dict[str, Any]:
    """构造线上格式（camelCase）的演示文稿。"""
    presentation: dict[str, Any] = {
        "id": pid,
        "title": "季度汇报",
        "slides": [
            {
                "id": i + 1,
                "title": f"第 {i + 1} 页",
                "notes": f"备注 {i + 1}",
                "content": [f"要点 {i + 1}"],
            }
            for i in range(slide_count)
        ],
    }
    if current_slide is not None:
        presentation["currentSlide"] = current_slide
    return presentation


def make_message(type_: str, room_id: str, device_id: str, **data: Any) -> dict[str, Any]:
    """构造一条上行消息信封。"""
    return {
        "type": type_,
        "roomId": room_id,
        "deviceId": device_id,
        "timestamp": 1700000000000,
        "data": data,
    }


def join(room_id: str, device_id: str, device_type: str = "presenter", name: str | None = None) -> dict[str, Any]:
    data: dict[str, Any] = {"deviceType": device_type}
    if name is not None:
        data["deviceName"] = name
    return make_message("join_room", room_id, device_id, **data)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def router(clock: FakeClock) -> MessageRouter:
    return MessageRouter(clock=clock)
