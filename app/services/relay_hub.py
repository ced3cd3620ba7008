"""
app.services.relay_hub
~~~~~~~~~~~~~~~~~~~~~~

连接生命周期管理 —— 把 WebSocket 连接接入 ``MessageRouter``，并把结果投递出去。

- ``open(websocket)``         → 为新连接建立 ``ClientConnection``（此时仍是匿名连接）
- ``receive(connection, raw)`` → 处理一条上行消息
- ``close(connection)``        → 断线清理，每条连接只执行一次
- ``run_sweeper()``            → 后台定期清理空闲房间

在 FastAPI lifespan 中创建并挂载于 ``app.state.relay_hub``。
"""
from __future__ import annotations

import asyncio

from fastapi import WebSocket

from app.core.logging import get_logger
from app.services.connection import ClientConnection
from app.services.message_router import Delivery, MalformedMessageError, MessageRouter

logger = get_logger(__name__)


class RelayHub:
    """中继服务（每个进程一个）。

    Attributes:
        router: 持有全部房间状态的消息路由。
        outbox_size: 每条连接发送队列的上限。
    """

    def __init__(self, router: MessageRouter | None = None, outbox_size: int = 256) -> None:
        self.router = router or MessageRouter()
        self.outbox_size = outbox_size
        self._connections: set[ClientConnection] = set()

    def open(self, websocket: WebSocket) -> ClientConnection:
        """登记一条已接受的连接。设备 ID 要等第一条 ``join_room`` 才会出现。"""
        connection = ClientConnection(websocket, max_pending=self.outbox_size)
        self._connections.add(connection)
        logger.info("连接建立 | conn=%s | 当前连接数: %d", connection.connection_id, len(self._connections))
        return connection

    def receive(self, connection: ClientConnection, raw: str | bytes) -> None:
        """处理一条上行消息。

        不合法的消息记录日志后丢弃；处理过程中的任何异常都只影响这一条消息。
        """
        try:
            deliveries = self.router.dispatch(connection, raw)
        except MalformedMessageError as e:
            logger.warning("丢弃不合法消息 | conn=%s | %s", connection.connection_id, e)
            return
        except Exception as e:
            logger.error("消息处理异常 | conn=%s | %s", connection.connection_id, e, exc_info=True)
            return
        self._deliver(deliveries)

    def close(self, connection: ClientConnection) -> None:
        """断线清理：无论连接是否完成过加入，都会走一次路由的断线路径。"""
        if connection.closed:
            return
        connection.close()
        self._connections.discard(connection)
        try:
            deliveries = self.router.disconnect(connection)
        except Exception as e:
            logger.error("断线清理异常 | conn=%s | %s", connection.connection_id, e, exc_info=True)
            return
        self._deliver(deliveries)
        logger.info("连接关闭 | conn=%s | 当前连接数: %d", connection.connection_id, len(self._connections))

    @property
    def connection_count(self) -> int:
        """当前打开的连接数。"""
        return len(self._connections)

    async def run_sweeper(self, interval_seconds: float, ttl_seconds: float) -> None:
        """每隔 ``interval_seconds`` 清理一次空闲房间，直到被取消。"""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.router.sweep_idle_rooms(ttl_seconds)
            except Exception as e:
                logger.error("空闲房间清理异常: %s", e, exc_info=True)

    def _deliver(self, deliveries: list[Delivery]) -> None:
        for connection, message in deliveries:
            connection.send(message)
