"""
tests.test_reaper
~~~~~~~~~~~~~~~~~

房间回收器与闲置巡检的单元测试。
"""
from __future__ import annotations

import asyncio
import contextlib
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.errors import NotInRoom, RoomNotFound
from app.prompts.notices import IDLE_TIMEOUT_REASON
from app.schemas.chat import DestroyResult, FileDescriptor
from app.services.chat_system import ChatSystem
from app.services.room_state import RoomState
from app.services.sweeper import RoomSweeper

IDLE_TTL: float = 60.0


def _descriptor(ref: str) -> FileDescriptor:
    return FileDescriptor(original_name="a.txt", mime_type="text/plain", size=3, storage_ref=ref)


class TestDestroy:
    """测试销毁流程。"""

    @pytest.mark.asyncio
    async def test_full_scenario(self, system: ChatSystem) -> None:
        """创建 → 双方加入 → 对话 → 房主离开 → 任何令牌都无法再加入。"""
        room = await system.create_room()
        await system.join(room.room_id, room.host_token, "c-host")
        joined = await system.join(room.room_id, room.guest_token, "c-guest")
        assert joined.participants_count == 2
        assert room.state is RoomState.ACTIVE

        _, hello = await system.append_text("c-host", "hello")
        history = await system.history("c-guest")
        assert [(m.sender, m.text) for m in history] == [("host", "hello")]

        _, reply = await system.append_text("c-guest", "hey", reply_to_id=hello.id)
        assert "hello" in reply.reply_to.preview

        result = await system.leave("c-host", "host left")

        assert result is not None
        assert sorted(result.connection_ids) == ["c-guest", "c-host"]
        assert result.reason == "host left"
        assert result.initiator_connection_id == "c-host"
        assert room.state is RoomState.DESTROYED
        for token in (room.host_token, room.guest_token):
            with pytest.raises(RoomNotFound):
                await system.join(room.room_id, token, "c-new")

    @pytest.mark.asyncio
    async def test_destroy_is_idempotent(self, system: ChatSystem, releaser) -> None:
        room = await system.create_room()
        await system.join(room.room_id, room.host_token, "c-host")
        await system.append_attachment(room.room_id, room.host_token, _descriptor("/tmp/a"))

        first = await system.destroy(room.room_id, "bye")
        second = await system.destroy(room.room_id, "bye again")

        assert isinstance(first, DestroyResult)
        assert second is None
        assert releaser.released == ["/tmp/a"]

    @pytest.mark.asyncio
    async def test_destroy_unknown_room(self, system: ChatSystem) -> None:
        assert await system.destroy("missing", "bye") is None

    @pytest.mark.asyncio
    async def test_teardown_clears_everything(self, system: ChatSystem) -> None:
        room = await system.create_room()
        await system.join(room.room_id, room.host_token, "c-host")
        await system.join(room.room_id, room.guest_token, "c-guest")
        await system.append_text("c-host", "hello")
        await system.set_typing("c-guest", True)

        await system.destroy(room.room_id, "bye")

        assert room.participants == {}
        assert room.history == []
        assert room.attached_resources == set()
        assert room.typing_roles == set()
        assert await system.registry.get_room(room.room_id) is None
        assert await system.registry.room_for_connection("c-host") is None
        assert await system.registry.room_for_connection("c-guest") is None
        assert system.room_count == 0

    @pytest.mark.asyncio
    async def test_every_connection_reported_once(self, system: ChatSystem) -> None:
        room = await system.create_room()
        await system.join(room.room_id, room.host_token, "c-host")
        await system.join(room.room_id, room.guest_token, "c-guest")

        results = await asyncio.gather(
            system.leave("c-host", "left"),
            system.on_disconnect("c-guest", "dropped"),
        )

        produced = [r for r in results if r is not None]
        assert len(produced) == 1
        assert sorted(produced[0].connection_ids) == ["c-guest", "c-host"]

    @pytest.mark.asyncio
    async def test_disconnect_of_unbound_connection(self, system: ChatSystem) -> None:
        assert await system.on_disconnect("c-nobody", "dropped") is None
        assert await system.leave("c-nobody", "left") is None

    @pytest.mark.asyncio
    async def test_destroy_waiting_room(self, system: ChatSystem) -> None:
        room = await system.create_room()
        await system.join(room.room_id, room.guest_token, "c-guest")

        result = await system.on_disconnect("c-guest", "dropped")

        assert result.connection_ids == ["c-guest"]
        assert result.initiator_connection_id == "c-guest"
        assert room.state is RoomState.DESTROYED

    @pytest.mark.asyncio
    async def test_cancelled_destroy_never_leaves_half_torn_room(
        self, system: ChatSystem, releaser,
    ) -> None:
        """注册表锁被占用时取消销毁任务，房间也不会停留在「已销毁但仍登记」的状态。"""
        room = await system.create_room()
        await system.join(room.room_id, room.host_token, "c-host")
        await system.append_attachment(room.room_id, room.host_token, _descriptor("/tmp/a"))

        await room.lock.acquire()
        task = asyncio.create_task(system.destroy(room.room_id, "bye"))
        await asyncio.sleep(0)  # 任务停在房间锁上
        await system.registry._lock.acquire()
        room.lock.release()
        for _ in range(3):
            await asyncio.sleep(0)
        task.cancel()
        system.registry._lock.release()
        with contextlib.suppress(asyncio.CancelledError):
            await task

        assert room.state is RoomState.DESTROYED
        assert system.room_count == 0
        assert await system.registry.room_for_connection("c-host") is None
        assert releaser.released == ["/tmp/a"]

    @pytest.mark.asyncio
    async def test_operations_after_destroy_fail(self, system: ChatSystem) -> None:
        room = await system.create_room()
        await system.join(room.room_id, room.host_token, "c-host")
        await system.destroy(room.room_id, "bye")

        with pytest.raises(NotInRoom):
            await system.append_text("c-host", "anyone?")
        with pytest.raises(RoomNotFound):
            await system.append_attachment(room.room_id, room.host_token, _descriptor("/tmp/x"))
        assert await system.set_typing("c-host", True) is None


class TestResourceRelease:
    """测试附件释放的容错。"""

    @pytest.mark.asyncio
    async def test_release_failures_are_reported_not_raised(self, clock, releaser) -> None:
        releaser.failing = {"/tmp/bad"}
        hook = MagicMock()
        system = ChatSystem(
            release=releaser, idle_ttl_seconds=IDLE_TTL, on_release_failure=hook, clock=clock,
        )
        room = await system.create_room()
        await system.join(room.room_id, room.host_token, "c-host")
        for ref in ("/tmp/good-1", "/tmp/bad", "/tmp/good-2"):
            await system.append_attachment(room.room_id, room.host_token, _descriptor(ref))

        result = await system.destroy(room.room_id, "bye")

        assert result is not None
        assert sorted(releaser.released) == ["/tmp/good-1", "/tmp/good-2"]
        hook.assert_called_once()
        handle, exc = hook.call_args[0]
        assert handle == "/tmp/bad"
        assert isinstance(exc, OSError)
        assert await system.registry.get_room(room.room_id) is None


class TestIdleSweep:
    """测试闲置巡检。"""

    @pytest.mark.asyncio
    async def test_idle_rooms_are_swept(self, system: ChatSystem, clock) -> None:
        """零人或一人的闲置房间都会被巡检销毁。"""
        empty = await system.create_room()
        lonely = await system.create_room()
        await system.join(lonely.room_id, lonely.host_token, "c-host")

        clock.advance(IDLE_TTL)
        results = await system.sweep_idle(IDLE_TIMEOUT_REASON)

        assert {r.room_id for r in results} == {empty.room_id, lonely.room_id}
        assert all(r.reason == IDLE_TIMEOUT_REASON for r in results)
        assert all(r.initiator_connection_id is None for r in results)
        by_room = {r.room_id: r for r in results}
        assert by_room[lonely.room_id].connection_ids == ["c-host"]
        assert by_room[empty.room_id].connection_ids == []
        assert system.room_count == 0

    @pytest.mark.asyncio
    async def test_activity_postpones_expiry(self, system: ChatSystem, clock) -> None:
        room = await system.create_room()
        await system.join(room.room_id, room.host_token, "c-host")
        await system.join(room.room_id, room.guest_token, "c-guest")

        clock.advance(IDLE_TTL - 1)
        await system.set_typing("c-guest", True)
        clock.advance(IDLE_TTL - 1)

        assert await system.sweep_idle(IDLE_TIMEOUT_REASON) == []
        assert room.state is RoomState.ACTIVE

    @pytest.mark.asyncio
    async def test_sweep_skips_fresh_rooms(self, system: ChatSystem, clock) -> None:
        old = await system.create_room()
        clock.advance(IDLE_TTL / 2)
        fresh = await system.create_room()
        clock.advance(IDLE_TTL / 2)

        results = await system.sweep_idle(IDLE_TIMEOUT_REASON)

        assert [r.room_id for r in results] == [old.room_id]
        assert await system.registry.get_room(fresh.room_id) is fresh


class TestRoomSweeper:
    """测试后台巡检任务。"""

    @pytest.mark.asyncio
    async def test_sweep_once_notifies_transport(self, system: ChatSystem, clock) -> None:
        await system.create_room()
        clock.advance(IDLE_TTL)
        on_destroyed = AsyncMock()
        sweeper = RoomSweeper(system, interval_seconds=10, on_destroyed=on_destroyed)

        results = await sweeper.sweep_once()

        assert len(results) == 1
        on_destroyed.assert_awaited_once_with(results[0])

    @pytest.mark.asyncio
    async def test_start_and_stop(self, system: ChatSystem, clock) -> None:
        await system.create_room()
        clock.advance(IDLE_TTL)
        sweeper = RoomSweeper(system, interval_seconds=0.01)

        sweeper.start()
        assert sweeper.running
        for _ in range(100):
            if system.room_count == 0:
                break
            await asyncio.sleep(0.01)
        await sweeper.stop()

        assert not sweeper.running
        assert system.room_count == 0
