"""
app.api.rooms
~~~~~~~~~~~~~

聊天室 REST 接口 —— 创建房间 + 上传附件 + 下载附件。

端点:
  - ``POST /api/rooms``                          → 创建房间，返回房主 / 邀请链接
  - ``POST /api/rooms/{room_id}/upload?t=令牌``  → 上传图片或文件并广播到房间
  - ``GET  /uploads/{file_name}``                → 下载已上传的文件
"""
from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse

from app.api.deps import get_chat_system, get_connection_hub, get_upload_store
from app.core.errors import ChatRoomError
from app.core.logging import get_logger
from app.core.rate_limit import limiter
from app.core.settings import settings
from app.schemas.api_response import ApiResponse
from app.schemas.rooms import RoomCreatedData, UploadResultData
from app.services.chat_system import ChatSystem
from app.services.connection import ConnectionHub, make_frame
from app.services.origins import build_origins
from app.services.upload_store import FileTooLarge, UploadStore

logger = get_logger(__name__)

router: APIRouter = APIRouter()
uploads_router: APIRouter = APIRouter()

_NO_STORE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


# ── 房间管理端点 ──────────────────────────────────────────────────────

@router.post("/rooms", summary="创建房间", response_model=ApiResponse[RoomCreatedData])
@limiter.limit("10/second")
async def create_room(request: Request, system: ChatSystem = Depends(get_chat_system)):
    """创建一个新的双人聊天室。

    返回的房主链接和邀请链接各带一个令牌；邀请链接只能成功使用一次。
    """
    room = await system.create_room()
    local_origin, public_origin = build_origins(
        str(request.base_url),
        request.headers.get("host", ""),
        settings.PORT,
        settings.PUBLIC_BASE_URL,
    )

    host_path = f"/room/{room.room_id}?t={room.host_token}"
    invite_path = f"/room/{room.room_id}?t={room.guest_token}"

    return ApiResponse.ok(
        data=RoomCreatedData(
            room_id=room.room_id,
            host_url=host_path,
            invite_url=invite_path,
            host_url_local=f"{local_origin}{host_path}",
            invite_url_local=f"{local_origin}{invite_path}",
            host_url_public=f"{public_origin}{host_path}",
            invite_url_public=f"{public_origin}{invite_path}",
        ),
    )


# ── 附件端点 ──────────────────────────────────────────────────────────

@router.post(
    "/rooms/{room_id}/upload",
    summary="上传附件",
    response_model=ApiResponse[UploadResultData],
)
@limiter.limit("5/second")
async def upload_attachment(
    request: Request,
    room_id: str,
    t: str = Query(default="", description="房主或访客令牌"),
    file: UploadFile | None = File(default=None),
    system: ChatSystem = Depends(get_chat_system),
    hub: ConnectionHub = Depends(get_connection_hub),
    store: UploadStore = Depends(get_upload_store),
):
    """把文件保存到上传目录，登记到房间并作为图片 / 文件消息广播。

    文件会先落盘；如果随后的房间或令牌校验失败，已保存的文件立即删除。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        room_id: 房间唯一标识。
        t: 上传者的令牌，上传者必须已经加入房间。
        file: multipart 表单中的 ``file`` 字段。
    """
    descriptor = None
    if file is not None:
        try:
            descriptor = await store.save(file)
        except FileTooLarge as e:
            return JSONResponse(
                status_code=413,
                content=ApiResponse.fail(
                    msg=str(e), code=413, data={"error": "file_too_large"},
                ).model_dump(),
            )

    try:
        target_room, message = await system.append_attachment(room_id, t, descriptor)
    except ChatRoomError:
        if descriptor is not None:
            await store.delete(descriptor.storage_ref)
        raise

    await hub.broadcast(target_room, make_frame("chat-message", message.model_dump(mode="json")))
    return ApiResponse.ok(data=UploadResultData(message_id=message.id))


@uploads_router.get("/uploads/{file_name}", summary="下载附件", include_in_schema=False)
async def download_attachment(file_name: str, store: UploadStore = Depends(get_upload_store)):
    """返回已上传的文件，禁止任何缓存。"""
    path = store.resolve(file_name)
    if path is None:
        raise HTTPException(status_code=404, detail="文件不存在。")
    return FileResponse(path, headers=_NO_STORE_HEADERS)
