"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 可控时钟、记录型附件释放器和预配置的 ``ChatSystem``。
"""
from __future__ import annotations

import os
import tempfile

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("WS_RATE_LIMIT_INTERVAL", "0")
os.environ.setdefault("UPLOADS_DIR", tempfile.mkdtemp(prefix="duo-chat-uploads-"))

from app.services.chat_system import ChatSystem  # noqa: E402

IDLE_TTL: float = 60.0


class FakeClock:
    """可手动推进的时钟（秒）。"""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingReleaser:
    """记录被释放的附件句柄，可指定某些句柄释放失败。"""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.released: list[str] = []
        self.failing = failing or set()

    async def __call__(self, handle: str) -> None:
        if handle in self.failing:
            raise OSError(f"cannot delete {handle}")
        self.released.append(handle)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def releaser() -> RecordingReleaser:
    return RecordingReleaser()


@pytest.fixture()
def system(clock: FakeClock, releaser: RecordingReleaser) -> ChatSystem:
    """短闲置阈值、可控时钟的聊天室系统。"""
    return ChatSystem(
        release=releaser,
        max_message_length=50,
        preview_length=10,
        idle_ttl_seconds=IDLE_TTL,
        clock=clock,
    )
