"""
app.core.errors
~~~~~~~~~~~~~~~

聊天室领域错误。

``ChatRoomError`` 的子类都是可预期、可恢复的业务状况，由核心层抛出，
由传输层转换为 ``join-error`` 帧或 ``ApiResponse.fail()`` 响应，不会导致进程崩溃。

``IllegalTransitionError`` 不属于业务错误：它代表状态机被要求执行不存在的迁移，
是程序逻辑缺陷，只中止当前操作。
"""
from __future__ import annotations


class ChatRoomError(Exception):
    """所有聊天室业务错误的基类。

    Attributes:
        code: 稳定的错误标识，供客户端判断。
        status_code: 经 HTTP 返回时使用的状态码。
        message: 面向用户的提示文本。
    """

    code: str = "chat_room_error"
    status_code: int = 400
    default_message: str = "聊天室操作失败。"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class RoomNotFound(ChatRoomError):
    code = "room_not_found"
    status_code = 404
    default_message = "房间不存在或已经结束。"


class InvalidToken(ChatRoomError):
    code = "invalid_token"
    status_code = 403
    default_message = "房间访问令牌无效。"


class InviteAlreadyUsed(ChatRoomError):
    code = "invite_already_used"
    status_code = 403
    default_message = "该邀请链接已经被使用过了。"


class RoleAlreadyConnected(ChatRoomError):
    code = "role_already_connected"
    status_code = 409
    default_message = "该参与者已经在房间中。"


class RoomFull(ChatRoomError):
    code = "room_full"
    status_code = 409
    default_message = "房间已满。"


class NotInRoom(ChatRoomError):
    code = "not_in_room"
    status_code = 403
    default_message = "请先加入房间。"


class InvalidMessage(ChatRoomError):
    code = "invalid_message"
    status_code = 400
    default_message = "消息内容无效。"


class IllegalTransitionError(RuntimeError):
    """请求了不在允许集合中的房间状态迁移。"""
