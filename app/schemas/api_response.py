"""
app.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~

HTTP 接口的统一应答体。

WebSocket 下行帧有自己的 ``{"type", "data"}`` 格式，不使用这里的结构。
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """统一 JSON 应答体: ``{"code": 200, "data": {...}, "msg": "success"}``。

    Attributes:
        code: 业务状态码，200 表示成功。
        data: 房间摘要等业务数据。
        msg: 人类可读的状态消息。
    """

    code: int = Field(default=200, description="业务状态码")
    data: T = Field(..., description="业务数据")
    msg: str = Field(default="success", description="状态消息")

    @classmethod
    def ok(cls, data: T, msg: str = "success") -> ApiResponse[T]:
        """成功响应。"""
        return cls(code=200, data=data, msg=msg)

    @classmethod
    def fail(cls, msg: str = "error", code: int = 500, data: Any = None) -> ApiResponse[Any]:
        """失败响应，由全局异常处理器使用。"""
        return cls(code=code, data=data, msg=msg)
