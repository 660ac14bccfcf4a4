"""
app.services.room_state
~~~~~~~~~~~~~~~~~~~~~~~

房间生命周期状态机。

状态只能沿下列有向边前进，没有回退::

    CREATED -> WAITING_SECOND
    WAITING_SECOND -> ACTIVE | DESTROYED
    ACTIVE -> DESTROYED
    DESTROYED -> (终态)
"""
from __future__ import annotations

from enum import Enum

from app.core.errors import IllegalTransitionError


class RoomState(str, Enum):
    CREATED = "CREATED"
    WAITING_SECOND = "WAITING_SECOND"
    ACTIVE = "ACTIVE"
    DESTROYED = "DESTROYED"


ALLOWED_TRANSITIONS: dict[RoomState, frozenset[RoomState]] = {
    RoomState.CREATED: frozenset({RoomState.WAITING_SECOND}),
    RoomState.WAITING_SECOND: frozenset({RoomState.ACTIVE, RoomState.DESTROYED}),
    RoomState.ACTIVE: frozenset({RoomState.DESTROYED}),
    RoomState.DESTROYED: frozenset(),
}


class RoomStateMachine:
    """单个房间的状态持有者，只接受允许集合中的迁移。"""

    def __init__(self) -> None:
        self._state = RoomState.CREATED

    @property
    def state(self) -> RoomState:
        return self._state

    @property
    def is_destroyed(self) -> bool:
        return self._state is RoomState.DESTROYED

    def can_transition(self, next_state: RoomState) -> bool:
        return next_state in ALLOWED_TRANSITIONS[self._state]

    def transition(self, next_state: RoomState) -> None:
        """执行一次迁移。

        Raises:
            IllegalTransitionError: 迁移不在允许集合中（例如重复销毁或复活已销毁的房间）。
        """
        if not self.can_transition(next_state):
            raise IllegalTransitionError(
                f"非法的房间状态迁移: {self._state.value} -> {next_state.value}",
            )
        self._state = next_state

    def force_destroyed(self) -> None:
        """经由必要的中间状态推进到 DESTROYED。"""
        if self._state is RoomState.CREATED:
            self.transition(RoomState.WAITING_SECOND)
        self.transition(RoomState.DESTROYED)
