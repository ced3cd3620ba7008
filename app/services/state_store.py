"""
app.services.state_store
~~~~~~~~~~~~~~~~~~~~~~~~

房间演示状态 —— 每个房间当前载入的演示文稿与当前页索引。

只要载入了演示文稿，当前页索引始终满足 ``0 <= index < 页数``：
所有写入都会被夹紧到合法区间，越界请求不会报错。
"""
from __future__ import annotations

import time
from collections.abc import Callable
from typing import Literal

from pydantic import BaseModel, ConfigDict

from app.schemas.relay import Presentation


class RoomState(BaseModel):
    """房间状态快照（不可变，每次变更都会生成新对象）。"""

    model_config = ConfigDict(frozen=True)

    presentation: Presentation | None = None
    current_slide_index: int = 0

    @property
    def has_presentation(self) -> bool:
        return self.presentation is not None

    @property
    def slide_count(self) -> int:
        return self.presentation.slide_count if self.presentation else 0


_EMPTY_STATE = RoomState()


def clamp_index(index: int, slide_count: int) -> int:
    """把页索引夹紧到 ``[0, slide_count - 1]``。"""
    return max(0, min(index, slide_count - 1))


class StateStore:
    """按房间码保存 ``RoomState``。"""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._states: dict[str, RoomState] = {}
        self._updated_at: dict[str, float] = {}

    def get(self, room_code: str) -> RoomState:
        """读取房间状态；未知房间返回空状态。"""
        return self._states.get(room_code, _EMPTY_STATE)

    def load_presentation(self, room_code: str, presentation: Presentation) -> RoomState:
        """整体替换房间的演示文稿。

        初始页取演示文稿自带的 ``currentSlide``（在范围内时），否则为 0。
        """
        initial = presentation.current_slide
        if initial is None or not 0 <= initial < presentation.slide_count:
            initial = 0
        return self._put(
            room_code,
            RoomState(presentation=presentation, current_slide_index=initial),
        )

    def set_slide(self, room_code: str, requested_index: int) -> RoomState:
        """跳转到指定页（夹紧）。房间没有演示文稿时不做任何事。"""
        state = self.get(room_code)
        if not state.has_presentation:
            return state
        index = clamp_index(requested_index, state.slide_count)
        return self._put(room_code, state.model_copy(update={"current_slide_index": index}))

    def step(self, room_code: str, direction: Literal["next", "prev"]) -> RoomState:
        """前进或后退一页，到达首尾时保持不动。"""
        state = self.get(room_code)
        delta = 1 if direction == "next" else -1
        return self.set_slide(room_code, state.current_slide_index + delta)

    def discard(self, room_code: str) -> None:
        self._states.pop(room_code, None)
        self._updated_at.pop(room_code, None)

    def room_codes(self) -> list[str]:
        return list(self._states)

    def updated_at(self, room_code: str) -> float | None:
        """房间状态最后一次写入的时刻。"""
        return self._updated_at.get(room_code)

    def _put(self, room_code: str, state: RoomState) -> RoomState:
        self._states[room_code] = state
        self._updated_at[room_code] = self._clock()
        return state
