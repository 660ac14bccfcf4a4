"""
app.prompts.notices
~~~~~~~~~~~~~~~~~~~

面向参与者的固定文案：角色名称、系统提示和房间结束原因。
"""
from __future__ import annotations

ROLE_LABELS: dict[str, str] = {
    "host": "参与者 A",
    "guest": "参与者 B",
}

WAITING_FOR_PEER_NOTICE: str = "正在等待第二位参与者..."

BOTH_PRESENT_NOTICE: str = "双方都已进入房间，可以开始聊天了。"

ATTACHMENT_PREVIEW_FALLBACK: str = "附件"

SLOW_DOWN_NOTICE: str = "您发送消息的速度太快啦，请慢一点~"

# ── 房间结束原因 ──────────────────────────────────────────────────────

LEAVE_REASON: str = "有参与者离开了房间，聊天已结束。"

DISCONNECT_REASON: str = "有参与者离开或断开了连接，聊天已结束。"

IDLE_TIMEOUT_REASON: str = "房间闲置时间已到，聊天已结束。"


def role_label(role: str) -> str:
    """返回角色对应的展示名称。"""
    return ROLE_LABELS[role]
