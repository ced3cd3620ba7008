"""
app.api.relay_ws
~~~~~~~~~~~~~~~~

WebSocket 同步中继端点。

每台设备（演示端或手机遥控端）保持一条长连接。连接建立后是匿名的，
直到发送第一条 ``join_room``。

上行消息（JSON）:
  - ``join_room``         —— 加入房间 ``{deviceType, deviceName}``
  - ``slide_change``      —— 翻页 ``{direction: next|prev|goto, slideNumber}``
  - ``load_presentation`` —— 载入演示文稿 ``{presentation}``
  - ``leave_room``        —— 离开单个房间

下行消息统一为 ``{"type": ..., "data": ...}``:
  ``room_joined`` / ``devices_updated`` / ``slide_changed`` / ``presentation_loaded``
"""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.logging import get_logger, request_id_ctx_var
from app.core.settings import settings
from app.services.relay_hub import RelayHub

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.websocket(settings.WS_PATH)
async def relay_endpoint(websocket: WebSocket) -> None:
    """设备长连接端点。

    接收循环逐条把消息交给 ``RelayHub``；发送由连接自己的写协程完成。
    无论正常断开还是异常，最终都会执行一次断线清理。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    hub: RelayHub = websocket.app.state.relay_hub
    await websocket.accept()
    connection = hub.open(websocket)
    token = request_id_ctx_var.set(connection.connection_id)
    writer = asyncio.create_task(connection.run_writer())

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
            # 文本帧与二进制帧都交给路由解析，解析失败只丢弃该帧
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            hub.receive(connection, raw)
    except WebSocketDisconnect:
        pass  # 正常断开
    except Exception as e:
        logger.error("WebSocket 接收异常: %s", e, exc_info=True)
    finally:
        hub.close(connection)
        writer.cancel()
        await asyncio.gather(writer, return_exceptions=True)
        request_id_ctx_var.reset(token)
