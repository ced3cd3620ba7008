"""
app.services.message_router
~~~~~~~~~~~~~~~~~~~~~~~~~~~

消息路由 —— 校验上行消息，修改房间/在线/状态三张表，并决定向谁广播。

``MessageRouter`` 是这三张表的唯一持有者，整个进程只有一个实例。
所有处理方法都是同步的：一条消息从修改到生成投递列表一气呵成，
事件循环里不可能有第二条消息插进来，所以不需要任何锁。

处理方法只返回 ``Delivery`` 列表，真正的写出由 ``RelayHub`` 完成。
"""
from __future__ import annotations

import json
import time
from collections.abc import Callable, Hashable
from typing import Any, NamedTuple

from pydantic import ValidationError

from app.core.logging import get_logger
from app.schemas.relay import (
    DeviceInfo,
    InboundEnvelope,
    JoinRoomData,
    LoadPresentationData,
    Presentation,
    PresentationLoadedEvent,
    RoomJoinedEvent,
    SlideChangeData,
    SlideChangedEvent,
)
from app.services.presence import Device, PresenceTracker
from app.services.room_registry import RoomRegistry
from app.services.state_store import RoomState, StateStore

logger = get_logger(__name__)

# 出站事件类型
ROOM_JOINED = "room_joined"
DEVICES_UPDATED = "devices_updated"
SLIDE_CHANGED = "slide_changed"
PRESENTATION_LOADED = "presentation_loaded"


class MalformedMessageError(ValueError):
    """上行消息无法解析或缺少必要字段。此类消息直接丢弃，不回复发送方。"""


class Delivery(NamedTuple):
    """一条待投递的出站消息。"""

    connection: Hashable
    message: dict[str, Any]


def make_event(event_type: str, data: Any) -> dict[str, Any]:
    """组装出站帧 ``{"type": ..., "data": ...}``。"""
    return {"type": event_type, "data": data}


def _dump(model: Any) -> Any:
    return model.model_dump(mode="json", by_alias=True)


def _device_list(devices: list[Device]) -> list[dict[str, Any]]:
    return [_dump(d.info()) for d in devices]


class MessageRouter:
    """同步中继的唯一状态持有者。

    - ``dispatch(connection, raw)``  → 解析并处理一条上行消息
    - ``disconnect(connection)``     → 连接断开后的清理与广播
    - ``sweep_idle_rooms(ttl)``      → 丢弃长时间无人房间的演示状态

    Attributes:
        presence: 在线设备表。
        registry: 房间成员表。
        store: 房间演示状态表。
    """

    def __init__(
        self,
        presence: PresenceTracker | None = None,
        registry: RoomRegistry | None = None,
        store: StateStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.presence = presence or PresenceTracker()
        self.registry = registry or RoomRegistry(self.presence, clock=clock)
        self.store = store or StateStore(clock=clock)
        self._clock = clock
        self._handlers: dict[str, Callable[[Hashable, InboundEnvelope], list[Delivery]]] = {
            "join_room": self._on_join_room,
            "join": self._on_join_room,
            "slide_change": self._on_slide_change,
            "load_presentation": self._on_load_presentation,
            "presentation_load": self._on_load_presentation,
            "leave_room": self._on_leave_room,
            "disconnect": self._on_leave_room,
        }

    # ── 入口 ──────────────────────────────────────────────────────────

    def dispatch(self, connection: Hashable, raw: str | bytes | dict[str, Any]) -> list[Delivery]:
        """处理一条上行消息，返回需要投递的出站消息。

        Raises:
            MalformedMessageError: 消息无法解析、类型未知或负载不合法。
        """
        envelope = self.parse(raw)
        handler = self._handlers.get(envelope.type)
        if handler is None:
            raise MalformedMessageError(f"未知消息类型: {envelope.type}")
        return handler(connection, envelope)

    @staticmethod
    def parse(raw: str | bytes | dict[str, Any]) -> InboundEnvelope:
        """把原始帧解析为 ``InboundEnvelope``。"""
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except ValueError as e:
                raise MalformedMessageError(f"不是合法的 JSON: {e}") from e
        if not isinstance(raw, dict):
            raise MalformedMessageError("消息必须是 JSON 对象")
        try:
            return InboundEnvelope.model_validate(raw)
        except ValidationError as e:
            raise MalformedMessageError(f"消息信封不合法: {e.error_count()} 处错误") from e

    def disconnect(self, connection: Hashable) -> list[Delivery]:
        """连接断开：注销其上的设备，并把它们从所有房间移除。

        对从未加入过房间的连接是空操作。房间变空时不再广播。
        """
        deliveries: list[Delivery] = []
        for device in self.presence.unregister_by_connection(connection):
            affected = self.registry.remove_member(device.id)
            logger.info(
                "设备断开 | device=%s | rooms=%s", device.id, ",".join(affected) or "-",
            )
            for room_code, roster in affected.items():
                if roster:
                    deliveries += self._fan_out(
                        roster, make_event(DEVICES_UPDATED, _device_list(roster)),
                    )
        return deliveries

    # ── 消息处理 ──────────────────────────────────────────────────────

    def _on_join_room(self, connection: Hashable, envelope: InboundEnvelope) -> list[Delivery]:
        data = self._validate(JoinRoomData, envelope.data)
        role = data.resolved_role
        device = Device(
            id=envelope.device_id,
            connection=connection,
            role=role,
            display_name=data.resolved_name or f"{role}_{envelope.device_id}",
        )
        self.presence.register_device(device)
        roster = self.registry.add_member(envelope.room_id, device.id)
        logger.info(
            "设备加入房间 | room=%s | device=%s | role=%s | 在线: %d",
            envelope.room_id, device.id, role, len(roster),
        )

        devices = [d.info() for d in roster]
        deliveries = self._fan_out(
            roster,
            make_event(ROOM_JOINED, _dump(RoomJoinedEvent(room_id=envelope.room_id, devices=devices))),
            make_event(DEVICES_UPDATED, [_dump(d) for d in devices]),
        )

        # 后加入的设备需要追上当前演示状态
        state = self.store.get(envelope.room_id)
        if state.presentation is not None:
            deliveries += self._fan_out(
                roster,
                self._presentation_event(state.presentation, state.current_slide_index),
                make_event(SLIDE_CHANGED, _dump(SlideChangedEvent(slide_number=state.current_slide_index))),
            )
        return deliveries

    def _on_slide_change(self, connection: Hashable, envelope: InboundEnvelope) -> list[Delivery]:
        data = self._validate(SlideChangeData, envelope.data)
        room_code = envelope.room_id
        stepping = data.direction in ("next", "prev")
        if not stepping and data.target is None:
            raise MalformedMessageError("slide_change 缺少方向或目标页")

        if not self.store.get(room_code).has_presentation:
            logger.debug("房间尚未载入演示文稿，忽略翻页 | room=%s", room_code)
            return []

        if stepping:
            state = self.store.step(room_code, data.direction)
        else:
            state = self.store.set_slide(room_code, data.target)

        logger.info(
            "翻页 | room=%s | device=%s | slide=%d/%d",
            room_code, envelope.device_id, state.current_slide_index + 1, state.slide_count,
        )
        # 发送方也会收到，以服务端夹紧后的页码为准
        return self._fan_out(
            self.registry.roster(room_code),
            make_event(SLIDE_CHANGED, _dump(SlideChangedEvent(slide_number=state.current_slide_index))),
        )

    def _on_load_presentation(self, connection: Hashable, envelope: InboundEnvelope) -> list[Delivery]:
        data = self._validate(LoadPresentationData, envelope.data)
        state = self.store.load_presentation(envelope.room_id, data.presentation)
        logger.info(
            "载入演示文稿 | room=%s | presentation=%s | slides=%d",
            envelope.room_id, data.presentation.id, state.slide_count,
        )
        return self._fan_out(
            self.registry.roster(envelope.room_id),
            self._presentation_event(data.presentation, state.current_slide_index),
        )

    def _on_leave_room(self, connection: Hashable, envelope: InboundEnvelope) -> list[Delivery]:
        roster = self.registry.leave(envelope.room_id, envelope.device_id)
        if roster is None:
            return []
        logger.info(
            "设备离开房间 | room=%s | device=%s | 在线: %d",
            envelope.room_id, envelope.device_id, len(roster),
        )
        return self._fan_out(roster, make_event(DEVICES_UPDATED, _device_list(roster)))

    # ── 查询与清理 ────────────────────────────────────────────────────

    def snapshot(self, room_code: str) -> tuple[list[DeviceInfo], RoomState]:
        """返回房间当前的设备名单与演示状态。"""
        return [d.info() for d in self.registry.roster(room_code)], self.store.get(room_code)

    def active_room_codes(self) -> list[str]:
        """有成员或仍保留演示状态的房间。"""
        codes = dict.fromkeys(self.registry.room_codes())
        codes.update(dict.fromkeys(self.store.room_codes()))
        return list(codes)

    def sweep_idle_rooms(self, ttl_seconds: float) -> list[str]:
        """丢弃无成员且超过 ``ttl_seconds`` 没有活动的房间状态，返回被清理的房间码。"""
        now = self._clock()
        candidates = dict.fromkeys(self.store.room_codes())
        candidates.update(dict.fromkeys(self.registry.empty_room_codes()))

        pruned: list[str] = []
        for room_code in candidates:
            if self.registry.has_members(room_code):
                continue
            stamps = [
                t for t in (self.store.updated_at(room_code), self.registry.emptied_at(room_code))
                if t is not None
            ]
            if stamps and now - max(stamps) < ttl_seconds:
                continue
            self.store.discard(room_code)
            self.registry.forget(room_code)
            pruned.append(room_code)

        if pruned:
            logger.info("清理空闲房间 | rooms=%s", ",".join(pruned))
        return pruned

    # ── 内部工具 ──────────────────────────────────────────────────────

    @staticmethod
    def _validate(model: Any, data: dict[str, Any] | None) -> Any:
        try:
            return model.model_validate(data or {})
        except ValidationError as e:
            raise MalformedMessageError(
                f"{model.__name__} 不合法: {e.error_count()} 处错误",
            ) from e

    @staticmethod
    def _presentation_event(presentation: Presentation, slide_number: int) -> dict[str, Any]:
        presentation = presentation.model_copy(update={"current_slide": slide_number})
        return make_event(
            PRESENTATION_LOADED,
            _dump(PresentationLoadedEvent(
                presentation=presentation,
                slide_number=slide_number,
            )),
        )

    @staticmethod
    def _fan_out(roster: list[Device], *messages: dict[str, Any]) -> list[Delivery]:
        """把每条消息投递给名单上的每个连接（同一连接只投递一次）。"""
        connections = list(dict.fromkeys(d.connection for d in roster))
        return [Delivery(conn, message) for message in messages for conn in connections]
