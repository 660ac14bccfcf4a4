"""
tests.test_session_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~

会话注册表（准入控制）单元测试。
"""
from __future__ import annotations

import asyncio

import pytest

from app.core.errors import (
    InvalidToken,
    InviteAlreadyUsed,
    RoleAlreadyConnected,
    RoomFull,
    RoomNotFound,
)
from app.prompts.notices import BOTH_PRESENT_NOTICE, ROLE_LABELS, WAITING_FOR_PEER_NOTICE
from app.services.chat_system import ChatSystem
from app.services.room import Participant
from app.services.room_state import RoomState


class TestCreateRoom:
    """测试房间创建。"""

    @pytest.mark.asyncio
    async def test_new_room_waits_for_second(self, system: ChatSystem) -> None:
        room = await system.create_room()

        assert room.state is RoomState.WAITING_SECOND
        assert room.participants_count == 0
        assert not room.guest_token_used
        assert await system.registry.get_room(room.room_id) is room
        assert system.room_count == 1


class TestJoin:
    """测试加入房间的各种判定。"""

    @pytest.mark.asyncio
    async def test_first_join_gets_waiting_notice(self, system: ChatSystem) -> None:
        room = await system.create_room()

        result = await system.join(room.room_id, room.host_token, "c-host")

        assert result.role == "host"
        assert result.role_label == ROLE_LABELS["host"]
        assert result.participants_count == 1
        assert result.history == []
        assert result.notice_to_self is not None
        assert result.notice_to_self.text == WAITING_FOR_PEER_NOTICE
        assert result.notice_to_room is None
        assert room.state is RoomState.WAITING_SECOND

    @pytest.mark.asyncio
    async def test_second_join_activates_room(self, system: ChatSystem) -> None:
        room = await system.create_room()
        await system.join(room.room_id, room.host_token, "c-host")

        result = await system.join(room.room_id, room.guest_token, "c-guest")

        assert result.role == "guest"
        assert result.participants_count == 2
        assert result.notice_to_self is None
        assert result.notice_to_room is not None
        assert result.notice_to_room.text == BOTH_PRESENT_NOTICE
        assert room.state is RoomState.ACTIVE
        assert room.guest_token_used

    @pytest.mark.asyncio
    async def test_guest_may_join_first(self, system: ChatSystem) -> None:
        """两个角色对称，访客可以先于房主加入。"""
        room = await system.create_room()

        first = await system.join(room.room_id, room.guest_token, "c-guest")
        second = await system.join(room.room_id, room.host_token, "c-host")

        assert first.role == "guest"
        assert second.role == "host"
        assert room.state is RoomState.ACTIVE

    @pytest.mark.asyncio
    async def test_unknown_room(self, system: ChatSystem) -> None:
        with pytest.raises(RoomNotFound):
            await system.join("missing", "whatever", "c-1")

    @pytest.mark.asyncio
    async def test_invalid_token(self, system: ChatSystem) -> None:
        room = await system.create_room()

        with pytest.raises(InvalidToken):
            await system.join(room.room_id, "not-a-token", "c-1")
        with pytest.raises(InvalidToken):
            await system.join(room.room_id, "", "c-1")

    @pytest.mark.asyncio
    async def test_host_cannot_join_twice(self, system: ChatSystem) -> None:
        room = await system.create_room()
        await system.join(room.room_id, room.host_token, "c-host")

        with pytest.raises(RoleAlreadyConnected):
            await system.join(room.room_id, room.host_token, "c-host-2")

    @pytest.mark.asyncio
    async def test_used_invite_is_rejected(self, system: ChatSystem) -> None:
        """第三个连接使用已被使用的邀请令牌应失败。"""
        room = await system.create_room()
        await system.join(room.room_id, room.host_token, "c-host")
        await system.join(room.room_id, room.guest_token, "c-guest")

        with pytest.raises(InviteAlreadyUsed):
            await system.join(room.room_id, room.guest_token, "c-third")

    @pytest.mark.asyncio
    async def test_invite_stays_used_after_guest_leaves_participants(
        self, system: ChatSystem,
    ) -> None:
        """邀请令牌的一次性与连接生命周期无关。"""
        room = await system.create_room()
        await system.join(room.room_id, room.guest_token, "c-guest")
        room.participants.pop("c-guest")

        with pytest.raises(InviteAlreadyUsed):
            await system.join(room.room_id, room.guest_token, "c-guest-again")

    @pytest.mark.asyncio
    async def test_room_full_check_is_independent(self, system: ChatSystem) -> None:
        """即使角色检查通过，已有两人时也应拒绝。"""
        room = await system.create_room()
        room.participants["x"] = Participant(role="guest", token=room.guest_token)
        room.participants["y"] = Participant(role="guest", token=room.guest_token)

        with pytest.raises(RoomFull):
            await system.join(room.room_id, room.host_token, "c-host")

    @pytest.mark.asyncio
    async def test_connection_cannot_join_two_rooms(self, system: ChatSystem) -> None:
        first = await system.create_room()
        second = await system.create_room()
        await system.join(first.room_id, first.host_token, "c-1")

        with pytest.raises(RoleAlreadyConnected):
            await system.join(second.room_id, second.host_token, "c-1")
        assert second.participants_count == 0

    @pytest.mark.asyncio
    async def test_join_updates_activity(self, system: ChatSystem, clock) -> None:
        room = await system.create_room()
        clock.advance(30)

        await system.join(room.room_id, room.host_token, "c-host")

        assert room.last_activity_at == clock.now
        assert room.created_at == clock.now - 30

    @pytest.mark.asyncio
    async def test_join_returns_history_copy(self, system: ChatSystem) -> None:
        room = await system.create_room()
        await system.join(room.room_id, room.host_token, "c-host")
        await system.append_text("c-host", "early bird")

        result = await system.join(room.room_id, room.guest_token, "c-guest")

        assert [m.text for m in result.history] == ["early bird"]
        assert result.history is not room.history

    @pytest.mark.asyncio
    async def test_concurrent_guest_joins_admit_exactly_one(self, system: ChatSystem) -> None:
        """同一邀请令牌的并发加入只能有一个成功。"""
        room = await system.create_room()
        await system.join(room.room_id, room.host_token, "c-host")

        results = await asyncio.gather(
            *(system.join(room.room_id, room.guest_token, f"c-{i}") for i in range(5)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert all(isinstance(f, InviteAlreadyUsed) for f in failures)
        assert room.participants_count == 2
        assert room.state is RoomState.ACTIVE

    @pytest.mark.asyncio
    async def test_join_racing_destroy_fails(self, system: ChatSystem) -> None:
        """与销毁并发调度的加入请求必然得到 RoomNotFound。"""
        room = await system.create_room()
        await system.join(room.room_id, room.host_token, "c-host")

        destroyed, joined = await asyncio.gather(
            system.destroy(room.room_id, "bye"),
            system.join(room.room_id, room.guest_token, "c-guest"),
            return_exceptions=True,
        )

        assert destroyed is not None
        assert destroyed.connection_ids == ["c-host"]
        assert isinstance(joined, RoomNotFound)
        assert await system.registry.room_for_connection("c-guest") is None

    @pytest.mark.asyncio
    async def test_join_after_destroy(self, system: ChatSystem) -> None:
        room = await system.create_room()
        await system.destroy(room.room_id, "bye")

        with pytest.raises(RoomNotFound):
            await system.join(room.room_id, room.host_token, "c-host")
