"""
app.services.tokens
~~~~~~~~~~~~~~~~~~~

房间 ID 与角色令牌的签发和比对。

令牌是不可猜测的持有者凭证：房主链接和邀请链接各一个。
比对一律使用常量时间比较，避免时序侧信道。
"""
from __future__ import annotations

import hmac
import secrets
import uuid
from dataclasses import dataclass

# 24 字节 = 192 位熵
TOKEN_BYTES: int = 24


@dataclass(frozen=True)
class RoomCredentials:
    """新房间的标识与两个角色令牌。"""

    room_id: str
    host_token: str
    guest_token: str


def issue_credentials() -> RoomCredentials:
    """生成一组新的房间 ID 和互不相同的房主 / 访客令牌。"""
    host_token = secrets.token_hex(TOKEN_BYTES)
    guest_token = secrets.token_hex(TOKEN_BYTES)
    while hmac.compare_digest(host_token, guest_token):
        guest_token = secrets.token_hex(TOKEN_BYTES)
    return RoomCredentials(
        room_id=str(uuid.uuid4()),
        host_token=host_token,
        guest_token=guest_token,
    )


def tokens_match(presented: str, expected: str) -> bool:
    """常量时间比较两个令牌。"""
    if not presented:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))
