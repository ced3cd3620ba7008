"""
app.services.presence
~~~~~~~~~~~~~~~~~~~~~

在线设备追踪 —— 维护设备元数据，同时按设备 ID 与连接句柄建立索引。

设备 ID 由客户端生成并持久化，中继从不自行分配。同一设备从新连接再次加入时，
直接覆盖旧记录（后写者胜），旧连接不会被主动关闭，等它自己断开时再按句柄清理。
"""
from __future__ import annotations

from collections.abc import Hashable, Iterable
from datetime import datetime, timezone

from app.core.logging import get_logger
from app.schemas.relay import DeviceInfo, DeviceRole

logger = get_logger(__name__)


class Device:
    """一台已加入过房间的设备。

    Attributes:
        id: 客户端提供的稳定设备 ID。
        connection: 传输层连接句柄，只用于查找，不在这里发送消息。
        role: ``presenter`` 或 ``controller``。
        display_name: 展示名称。
        joined_at: 本次注册时间（UTC）。
    """

    def __init__(
        self,
        id: str,
        connection: Hashable,
        role: DeviceRole,
        display_name: str,
        joined_at: datetime | None = None,
    ) -> None:
        self.id = id
        self.connection = connection
        self.role = role
        self.display_name = display_name
        self.joined_at = joined_at or datetime.now(timezone.utc)

    def info(self) -> DeviceInfo:
        """返回可下发给客户端的设备摘要。"""
        return DeviceInfo(
            id=self.id,
            type=self.role,
            name=self.display_name,
            connected_at=self.joined_at,
        )

    def __repr__(self) -> str:
        return f"Device(id={self.id!r}, role={self.role!r}, name={self.display_name!r})"


class PresenceTracker:
    """设备在线表。

    ``_devices`` 以设备 ID 为键；``_by_connection`` 记录每个连接句柄
    当前绑定的设备 ID（通常只有一个）。两张表始终同步更新。
    """

    def __init__(self) -> None:
        self._devices: dict[str, Device] = {}
        self._by_connection: dict[Hashable, set[str]] = {}

    def register_device(self, device: Device) -> None:
        """按 ID 写入设备记录；同 ID 再次注册时覆盖旧记录。"""
        previous = self._devices.get(device.id)
        if previous is not None and previous.connection is not device.connection:
            self._unbind(previous.connection, device.id)
            logger.info(
                "设备换用新连接，旧连接记录被覆盖 | device=%s", device.id,
            )
        self._devices[device.id] = device
        self._by_connection.setdefault(device.connection, set()).add(device.id)

    def unregister_by_connection(self, connection: Hashable) -> list[Device]:
        """连接断开时调用，移除并返回当前绑定在该连接上的所有设备。

        连接从未完成加入，或其设备已被新连接接管时返回空列表。
        """
        device_ids = self._by_connection.pop(connection, set())
        removed: list[Device] = []
        for device_id in sorted(device_ids):
            device = self._devices.get(device_id)
            if device is not None and device.connection is connection:
                del self._devices[device_id]
                removed.append(device)
        return removed

    def resolve(self, device_ids: Iterable[str]) -> list[Device]:
        """把设备 ID 映射为设备记录，保持输入顺序，跳过未注册的 ID。"""
        return [self._devices[i] for i in device_ids if i in self._devices]

    def devices_on(self, connection: Hashable) -> list[Device]:
        """返回当前绑定在某连接上的设备。"""
        return self.resolve(sorted(self._by_connection.get(connection, ())))

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    def _unbind(self, connection: Hashable, device_id: str) -> None:
        ids = self._by_connection.get(connection)
        if ids is None:
            return
        ids.discard(device_id)
        if not ids:
            del self._by_connection[connection]
