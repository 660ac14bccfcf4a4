"""
app.services.room
~~~~~~~~~~~~~~~~~

聊天室领域模型 —— 封装一个完整的双人临时聊天室实体。

每个 ``ChatRoom`` 拥有独立的状态机、参与者表、消息历史、附件集合和输入状态，
并持有一把 ``asyncio.Lock``：同一房间上的加入、发消息、输入状态和销毁操作互斥。
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

from app.schemas.chat import Message, Role
from app.services.room_state import RoomState, RoomStateMachine
from app.services.tokens import RoomCredentials, tokens_match


@dataclass(frozen=True)
class Participant:
    """房间内一个已连接的参与者。"""

    role: Role
    token: str


class ChatRoom:
    """一个双人临时聊天室。

    Attributes:
        room_id: 房间唯一标识，创建后不可变。
        host_token: 房主令牌（可重复使用，房主链接不会被分享）。
        guest_token: 访客邀请令牌（一次性）。
        guest_token_used: 邀请令牌是否已被成功使用过。
        participants: 连接 ID → 参与者。
        history: 按投递顺序排列的消息。
        attached_resources: 本房间拥有的上传文件路径。
        typing_roles: 正在输入的角色。
        lock: 本房间的互斥锁。
    """

    def __init__(
        self,
        credentials: RoomCredentials,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.room_id = credentials.room_id
        self.host_token = credentials.host_token
        self.guest_token = credentials.guest_token
        self.guest_token_used = False
        self.machine = RoomStateMachine()
        self.participants: dict[str, Participant] = {}
        self.history: list[Message] = []
        self.attached_resources: set[str] = set()
        self.typing_roles: set[Role] = set()
        self._clock = clock
        self.created_at: float = clock()
        self.last_activity_at: float = self.created_at
        self.lock = asyncio.Lock()

    @property
    def state(self) -> RoomState:
        return self.machine.state

    @property
    def is_destroyed(self) -> bool:
        return self.machine.is_destroyed

    @property
    def participants_count(self) -> int:
        return len(self.participants)

    def role_for_token(self, token: str) -> Role | None:
        """按令牌精确匹配角色，匹配不到返回 ``None``。"""
        if tokens_match(token, self.host_token):
            return "host"
        if tokens_match(token, self.guest_token):
            return "guest"
        return None

    def has_role(self, role: Role) -> bool:
        """该角色当前是否已有连接在房间中。"""
        return any(p.role == role for p in self.participants.values())

    def touch(self) -> None:
        """刷新最后活动时间。"""
        self.last_activity_at = self._clock()

    def idle_for(self, now: float) -> float:
        return now - self.last_activity_at
