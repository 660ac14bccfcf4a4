"""
app.main
~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api import chat_ws, rooms
from app.core.errors import ChatRoomError
from app.core.logging import get_logger, request_id_ctx_var, setup_logging
from app.core.rate_limit import limiter
from app.core.settings import settings
from app.schemas.api_response import ApiResponse
from app.services.chat_system import ChatSystem
from app.services.connection import ConnectionHub
from app.services.sweeper import RoomSweeper
from app.services.upload_store import UploadStore

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)

_SECURITY_HEADERS: dict[str, str] = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Content-Security-Policy": (
        "default-src 'self'; script-src 'self'; img-src 'self' data: blob:; "
        "connect-src 'self' ws: wss:; base-uri 'self'; frame-ancestors 'none'; "
        "form-action 'self'"
    ),
}


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    store = UploadStore(settings.UPLOADS_DIR, settings.MAX_FILE_SIZE)
    store.ensure_directory()
    await store.clear()

    hub = ConnectionHub()
    system = ChatSystem.from_settings(settings, release=store.delete)
    sweeper = RoomSweeper(
        system,
        interval_seconds=settings.ROOM_CLEANUP_INTERVAL_SECONDS,
        on_destroyed=hub.deliver_room_ended,
    )

    app.state.upload_store = store
    app.state.connection_hub = hub
    app.state.chat_system = system
    app.state.sweeper = sweeper

    sweeper.start()
    logger.info(
        "🚀 应用已启动 | env=%s | debug=%s | log_level=%s | room_ttl=%ss",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
        settings.ROOM_TTL_SECONDS,
    )
    yield
    # ── 关闭 ──
    await sweeper.stop()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="双人临时聊天室后端 API",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ── 中间件 ────────────────────────────────────────────────────────────

@app.middleware("http")
async def request_context_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """为每个请求分配请求 ID，并附加禁用缓存和安全相关的响应头。"""
    req_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    token = request_id_ctx_var.set(req_id)
    try:
        response = await call_next(request)
    finally:
        request_id_ctx_var.reset(token)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    response.headers["X-Request-ID"] = req_id
    return response


# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(rooms.router, prefix="/api", tags=["Rooms"])
app.include_router(rooms.uploads_router, tags=["Uploads"])
app.include_router(chat_ws.router, tags=["WebSocket Chat"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(ChatRoomError)
async def chat_room_error_handler(request: Request, exc: ChatRoomError) -> JSONResponse:
    """把聊天室业务错误转换为统一的失败响应。"""
    return JSONResponse(
        status_code=exc.status_code,
        content=ApiResponse.from_error(exc).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(
        status_code=500,
        content=response.model_dump(),
    )


@app.get("/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    """验证服务是否正常运行。"""
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "rooms": request.app.state.chat_system.room_count,
            "connections": request.app.state.connection_hub.online_count,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
