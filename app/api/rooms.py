"""
app.api.rooms
~~~~~~~~~~~~~

房间 REST 接口 —— 查看房间状态、申请新房间码。

路由前缀 ``/api``。这些接口只读取中继状态，不会修改任何房间。

端点:
  - ``GET  /rooms``          → 获取活跃房间列表
  - ``GET  /rooms/{code}``   → 获取房间详情（未知房间返回空摘要，格式错误返回 400）
  - ``POST /rooms/code``     → 申请一个未被占用的房间码
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.api.deps import get_relay_hub
from app.core.rate_limit import limiter
from app.core.settings import settings
from app.schemas.api_response import ApiResponse
from app.schemas.relay import RoomCodeData, RoomSummaryData
from app.services.relay_hub import RelayHub
from app.services.room_code import build_control_url, generate_room_code, is_valid_room_code

router: APIRouter = APIRouter()


def _summarize(hub: RelayHub, room_code: str) -> RoomSummaryData:
    devices, state = hub.router.snapshot(room_code)
    presentation = state.presentation
    return RoomSummaryData(
        room_code=room_code,
        member_count=len(devices),
        devices=devices,
        presentation_id=presentation.id if presentation else None,
        presentation_title=presentation.title if presentation else None,
        slide_count=state.slide_count,
        current_slide=state.current_slide_index,
        control_url=build_control_url(settings.PUBLIC_BASE_URL, room_code),
    )


@router.get("/rooms", summary="获取活跃房间列表", response_model=ApiResponse[list[RoomSummaryData]])
@limiter.limit("10/second")
async def list_rooms(request: Request, hub: RelayHub = Depends(get_relay_hub)):
    """返回所有有成员或仍保留演示状态的房间。"""
    rooms = [_summarize(hub, code) for code in hub.router.active_room_codes()]
    return ApiResponse.ok(data=rooms)


@router.post("/rooms/code", summary="申请新房间码", response_model=ApiResponse[RoomCodeData])
@limiter.limit("5/second")
async def create_room_code(request: Request, hub: RelayHub = Depends(get_relay_hub)):
    """生成一个当前未被使用的 6 位房间码。

    房间本身要等演示端第一次 ``join_room`` 才会出现。
    """
    code = generate_room_code(taken=set(hub.router.active_room_codes()))
    return ApiResponse.ok(
        data=RoomCodeData(
            room_code=code,
            control_url=build_control_url(settings.PUBLIC_BASE_URL, code),
        ),
    )


@router.get("/rooms/{room_code}", summary="获取房间详情", response_model=ApiResponse[RoomSummaryData])
@limiter.limit("10/second")
async def room_info(request: Request, room_code: str, hub: RelayHub = Depends(get_relay_hub)):
    """返回指定房间的在线设备与演示状态。

    Args:
        room_code: 6 位大写字母或数字的房间码。
    """
    if not is_valid_room_code(room_code):
        response = ApiResponse.fail(msg=f"房间码格式不正确: {room_code}", code=400)
        return JSONResponse(status_code=400, content=response.model_dump())
    return ApiResponse.ok(data=_summarize(hub, room_code))
