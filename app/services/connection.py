"""
app.services.connection
~~~~~~~~~~~~~~~~~~~~~~~

单条 WebSocket 连接的封装 —— 连接句柄 + 带上限的发送队列。

中继对每个连接的写入都是"投递即返回"：``send()`` 只把消息放进队列，
由连接自己的写协程 ``run_writer()`` 按顺序发出。慢连接只会堵住自己的队列，
不会拖慢房间里其他设备。
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Any

from fastapi import WebSocket

from app.core.logging import get_logger

logger = get_logger(__name__)

# 写协程的结束信号
_CLOSE = None


class ClientConnection:
    """一条设备连接。

    对象本身即连接句柄：按身份比较与哈希，在线表用它做键。

    Attributes:
        websocket: 底层 WebSocket 连接。
        connection_id: 日志用的短 ID。
        closed: 是否已经走过断线清理。
    """

    def __init__(self, websocket: WebSocket, max_pending: int = 256) -> None:
        self.websocket = websocket
        self.connection_id = f"ws-{uuid.uuid4().hex[:8]}"
        self.closed = False
        self._outbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=max_pending)

    def send(self, message: dict[str, Any]) -> bool:
        """把消息放入发送队列，不等待实际写出。队列已满时丢弃并返回 ``False``。"""
        if self.closed:
            return False
        try:
            self._outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                "发送队列已满，丢弃消息 | conn=%s | type=%s",
                self.connection_id, message.get("type"),
            )
            return False
        return True

    def close(self) -> None:
        """标记连接关闭并通知写协程退出。"""
        self.closed = True
        try:
            self._outbox.put_nowait(_CLOSE)
        except asyncio.QueueFull:
            # 队列满时写协程仍在消费，由调用方负责取消
            pass

    @property
    def pending(self) -> int:
        """尚未写出的消息数。"""
        return self._outbox.qsize()

    async def run_writer(self) -> None:
        """按入队顺序把消息写到 WebSocket，直到收到结束信号或写入失败。"""
        while True:
            message = await self._outbox.get()
            if message is _CLOSE:
                return
            try:
                await self.websocket.send_json(message)
            except Exception as e:
                logger.warning("写入失败，停止发送 | conn=%s | err=%s", self.connection_id, e)
                return

    def __repr__(self) -> str:
        return f"ClientConnection({self.connection_id})"
