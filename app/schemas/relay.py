"""
app.schemas.relay
~~~~~~~~~~~~~~~~~

同步中继的 Pydantic 模型 —— 演示文稿、设备、入站消息与出站事件。

线上格式统一使用 camelCase（``roomId`` / ``deviceId`` / ``slideNumber``），
Python 侧使用 snake_case，两者通过 ``alias_generator`` 互相转换。
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DeviceRole = Literal["presenter", "controller"]
SlideDirection = Literal["next", "prev", "goto"]


class WireModel(BaseModel):
    """线上模型基类：camelCase 别名，同时允许按字段名构造。"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ── 演示文稿 ──────────────────────────────────────────────────────────

class Slide(WireModel):
    """单页幻灯片。"""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="页码标识")
    title: str = Field(default="", description="页标题")
    notes: str = Field(default="", description="演讲者备注")
    content: list[str] = Field(default_factory=list, description="正文要点")
    image_url: str | None = Field(default=None, description="可选配图地址")


class Presentation(WireModel):
    """一份演示文稿。载入房间后不再原地修改，只会被整体替换。"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="演示文稿 ID")
    title: str = Field(default="", description="演示文稿标题")
    slides: list[Slide] = Field(..., min_length=1, description="按顺序排列的幻灯片")
    current_slide: int | None = Field(default=None, description="发起方希望的初始页")

    @property
    def slide_count(self) -> int:
        return len(self.slides)


# ── 设备 ──────────────────────────────────────────────────────────────

class DeviceInfo(WireModel):
    """下发给客户端的设备摘要（不包含连接句柄）。"""

    id: str
    type: DeviceRole
    name: str
    connected_at: datetime


# ── 入站消息 ──────────────────────────────────────────────────────────

class InboundEnvelope(WireModel):
    """客户端上行消息的统一信封。"""

    type: str = Field(..., min_length=1, description="消息类型")
    room_id: str = Field(..., min_length=1, description="房间码")
    device_id: str = Field(..., min_length=1, description="客户端持久化的设备 ID")
    timestamp: float | None = Field(default=None, description="客户端发送时间（毫秒）")
    data: dict[str, Any] | None = Field(default=None, description="随类型变化的负载")


class JoinRoomData(WireModel):
    """``join_room`` 负载。``role`` / ``displayName`` 为兼容写法。"""

    device_type: DeviceRole | None = Field(default=None, validation_alias="deviceType")
    device_name: str | None = Field(default=None, validation_alias="deviceName")
    role: DeviceRole | None = None
    display_name: str | None = None

    @property
    def resolved_role(self) -> DeviceRole:
        return self.role or self.device_type or "presenter"

    @property
    def resolved_name(self) -> str | None:
        return self.display_name or self.device_name


class SlideChangeData(WireModel):
    """``slide_change`` 负载：方向步进，或跳转到目标页。"""

    direction: SlideDirection | None = None
    slide_number: int | None = None
    target_index: int | None = None
    goto: int | None = None

    @property
    def target(self) -> int | None:
        """跳转目标页，按 ``targetIndex`` > ``slideNumber`` > ``goto`` 取第一个非空值。"""
        for value in (self.target_index, self.slide_number, self.goto):
            if value is not None:
                return value
        return None


class LoadPresentationData(WireModel):
    """``load_presentation`` 负载。"""

    presentation: Presentation


# ── 出站事件 ──────────────────────────────────────────────────────────

class RoomJoinedEvent(WireModel):
    room_id: str
    devices: list[DeviceInfo]


class SlideChangedEvent(WireModel):
    slide_number: int


class PresentationLoadedEvent(WireModel):
    presentation: Presentation
    slide_number: int


# ── REST 响应 ─────────────────────────────────────────────────────────

class RoomSummaryData(WireModel):
    """房间摘要信息数据类型。"""

    room_code: str = Field(..., description="房间码")
    member_count: int = Field(..., description="当前在线设备数")
    devices: list[DeviceInfo] = Field(default_factory=list, description="在线设备列表")
    presentation_id: str | None = Field(default=None, description="已载入演示文稿 ID")
    presentation_title: str | None = Field(default=None, description="已载入演示文稿标题")
    slide_count: int = Field(default=0, description="幻灯片总页数")
    current_slide: int = Field(default=0, description="当前页索引")
    control_url: str = Field(..., description="遥控端入口链接")


class RoomCodeData(WireModel):
    """新房间码。"""

    room_code: str = Field(..., description="6 位房间码")
    control_url: str = Field(..., description="遥控端入口链接")
