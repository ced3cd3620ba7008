"""
app.services.room_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~

房间成员表 —— 房间码 → 有序成员集合。

房间在第一次有设备加入时隐式创建，成员清空后即被丢弃，
没有任何显式的"关闭房间"操作。一台设备可以同时属于多个房间。
"""
from __future__ import annotations

import time
from collections.abc import Callable

from app.services.presence import Device, PresenceTracker


class RoomRegistry:
    """房间成员登记表。

    成员集合用 ``dict[str, None]`` 保存，以保留首次加入的顺序。
    成员清空的时刻记录在 ``_emptied_at``，供空闲清理判断房间状态能否丢弃。

    Attributes:
        presence: 用于把成员 ID 解析为设备记录的在线表。
    """

    def __init__(
        self,
        presence: PresenceTracker,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.presence = presence
        self._clock = clock
        self._members: dict[str, dict[str, None]] = {}
        self._emptied_at: dict[str, float] = {}

    def add_member(self, room_code: str, device_id: str) -> list[Device]:
        """把设备加入房间（重复加入不改变成员与顺序），返回最新名单。"""
        members = self._members.setdefault(room_code, {})
        members.setdefault(device_id, None)
        self._emptied_at.pop(room_code, None)
        return self.roster(room_code)

    def remove_member(self, device_id: str) -> dict[str, list[Device]]:
        """把设备从所有房间移除，返回每个受影响房间的最新名单。"""
        affected: dict[str, list[Device]] = {}
        for room_code in [c for c, m in self._members.items() if device_id in m]:
            affected[room_code] = self._discard(room_code, device_id)
        return affected

    def leave(self, room_code: str, device_id: str) -> list[Device] | None:
        """把设备从单个房间移除；设备本不在该房间时返回 ``None``。"""
        if device_id not in self._members.get(room_code, {}):
            return None
        return self._discard(room_code, device_id)

    def roster(self, room_code: str) -> list[Device]:
        """按首次加入顺序返回房间内仍在线的设备。"""
        return self.presence.resolve(self._members.get(room_code, {}))

    def has_members(self, room_code: str) -> bool:
        return bool(self._members.get(room_code))

    def emptied_at(self, room_code: str) -> float | None:
        """房间最近一次变空的时刻；仍有成员或从未出现过时为 ``None``。"""
        return self._emptied_at.get(room_code)

    def forget(self, room_code: str) -> None:
        """清理空房间的残留记录。"""
        if not self.has_members(room_code):
            self._emptied_at.pop(room_code, None)

    def room_codes(self) -> list[str]:
        """所有仍有成员的房间码。"""
        return list(self._members)

    def empty_room_codes(self) -> list[str]:
        """已经变空、尚未被清理的房间码。"""
        return list(self._emptied_at)

    def rooms_of(self, device_id: str) -> list[str]:
        return [code for code, members in self._members.items() if device_id in members]

    def _discard(self, room_code: str, device_id: str) -> list[Device]:
        members = self._members[room_code]
        members.pop(device_id, None)
        if not members:
            del self._members[room_code]
            self._emptied_at[room_code] = self._clock()
        return self.roster(room_code)
